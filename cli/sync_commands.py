"""Sync command - mirror the working tree into the bucket."""

import signal
import threading

import click

from cli.utils import format_size, handle_error, load_app_config, setup_logging
from config import ConfigError
from s3_mirror import Mirror, MirrorCancelled, MirrorError


def _install_cancel_handler(cancel: threading.Event):
    """Turn SIGTERM into a cooperative cancel. Returns the previous handler."""
    if threading.current_thread() is not threading.main_thread():
        return None

    def _on_sigterm(signum, frame):
        cancel.set()

    previous = signal.getsignal(signal.SIGTERM)
    signal.signal(signal.SIGTERM, _on_sigterm)
    return previous


def register_commands(cli):
    """Register sync command with main CLI."""

    @cli.command('sync')
    @click.option('--source', '-s', 'source_dir', help='Git working tree to publish')
    @click.option('--bucket', '-b', 'bucket_url', help='Bucket URL (s3://name[/prefix] or file:///dir)')
    @click.option('--profile', 'aws_profile', help='AWS credentials profile')
    @click.option('--region', 'aws_region', help='AWS region')
    @click.option('--revision', help='Revision to publish (default: HEAD)')
    @click.option('--git', 'git_path', help='Path to the git executable')
    @click.option('--dry-run', is_flag=True, help='Show what would be uploaded without uploading')
    @click.option('--progress', is_flag=True, help='Show a progress bar')
    @click.pass_context
    def sync(ctx, source_dir, bucket_url, aws_profile, aws_region, revision,
             git_path, dry_run, progress):
        """Upload changed files from the git tree to the bucket.

        Only files tracked at the revision are considered. A file is uploaded
        when its key is missing remotely or its MD5 differs from the stored
        object; otherwise it is skipped. Nothing is deleted from the bucket.

        Examples:
            # Preview what would change
            python -m main sync --dry-run

            # Publish a site
            python -m main sync -s ./site -b s3://example.com --profile example.com
        """
        verbose = ctx.obj['verbose']
        overrides = {
            'source_dir': source_dir,
            'bucket_url': bucket_url,
            'aws_profile': aws_profile,
            'aws_region': aws_region,
            'revision': revision,
            'git_path': git_path,
        }

        try:
            config = load_app_config(ctx, overrides)
        except (FileNotFoundError, ConfigError) as e:
            handle_error(e, verbose)

        setup_logging(config, verbose)

        mirror = Mirror(config.mirror, dry_run=dry_run, show_progress=progress)
        cancel = threading.Event()
        previous_handler = _install_cancel_handler(cancel)

        try:
            result = mirror.run(cancel)
        except MirrorCancelled as e:
            click.echo(f"Cancelled: {e}", err=True)
            ctx.exit(130)
        except MirrorError as e:
            handle_error(e, verbose)
        finally:
            if previous_handler is not None:
                signal.signal(signal.SIGTERM, previous_handler)

        verb = "Would upload" if result.dry_run else "Uploaded"
        click.echo(f"\n✓ {verb} {result.upload_count} file(s) ({format_size(result.bytes_uploaded)})")
        click.echo(f"  Unchanged: {len(result.skipped)}")
        if result.ignored:
            click.echo(f"  Ignored: {len(result.ignored)}")
        if result.revision:
            click.echo(f"  Revision: {result.revision}")
