"""Configuration management commands."""

from pathlib import Path

import click

from cli.utils import handle_error, load_app_config
from config import DEFAULT_CONFIG_PATH, ConfigError, create_default_config


def register_commands(cli):
    """Register config commands with main CLI."""

    @cli.group('config')
    @click.pass_context
    def config_group(ctx):
        """Configuration management commands.

        Initialize and inspect the mirror configuration.
        """
        pass

    @config_group.command('init')
    @click.option('--force', is_flag=True, help='Overwrite an existing file without asking')
    @click.pass_context
    def init_config(ctx, force):
        """Create a default configuration file.

        Examples:
            # Create mirror.json
            python -m main config init

            # Create config at custom location
            python -m main --config site.json config init
        """
        config_path = ctx.obj['config_path'] or DEFAULT_CONFIG_PATH

        if Path(config_path).exists() and not force:
            click.echo(f"Configuration file already exists: {config_path}")
            if not click.confirm("Overwrite existing configuration?"):
                return

        create_default_config(config_path)
        click.echo(f"✓ Created configuration file: {config_path}")
        click.echo("\nNext steps:")
        click.echo("  1. Set source_dir to the git working tree to publish")
        click.echo("  2. Set bucket_url, aws_profile and aws_region")
        click.echo("  3. Preview with: python -m main sync --dry-run")

    @config_group.command('show')
    @click.pass_context
    def show_config(ctx):
        """Print the effective configuration as JSON."""
        try:
            config = load_app_config(ctx)
        except (FileNotFoundError, ConfigError) as e:
            handle_error(e, ctx.obj['verbose'])

        click.echo(config.model_dump_json(indent=2))
