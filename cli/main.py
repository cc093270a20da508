"""Main CLI entry point - Root command group with global options."""

import click

from s3_mirror import __version__


@click.group()
@click.option('--config', '-c', default=None,
              help='Configuration file path (default: mirror.json if present)')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging and tracebacks')
@click.version_option(version=__version__, prog_name='Repo Mirror')
@click.pass_context
def cli(ctx, config, verbose):
    """Repo Mirror - publish a git tree to object storage.

    Uploads the files tracked at HEAD to a bucket, skipping every file whose
    MD5 already matches the stored object. Remote objects are never deleted.

    Examples:
        # Create a config file to edit
        python -m main config init

        # Preview a sync
        python -m main sync --dry-run

        # Mirror a site without a config file
        python -m main sync --source ./site --bucket s3://example.com --region us-east-1
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose


def register_all_commands():
    """Register all command modules with the main CLI."""
    from cli import (
        config_commands,
        remote_commands,
        sync_commands,
    )

    config_commands.register_commands(cli)
    remote_commands.register_commands(cli)
    sync_commands.register_commands(cli)


# Register all commands when module is imported
register_all_commands()
