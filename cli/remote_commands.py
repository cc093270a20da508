"""Remote bucket inspection commands."""

import click
from tabulate import tabulate

from cli.utils import format_size, handle_error, load_app_config, setup_logging
from config import ConfigError
from s3_mirror import MirrorError, open_bucket


def register_commands(cli):
    """Register remote commands with main CLI."""

    @cli.group('remote')
    @click.pass_context
    def remote_group(ctx):
        """Inspect the destination bucket."""
        pass

    @remote_group.command('list')
    @click.option('--bucket', '-b', 'bucket_url', help='Bucket URL (overrides config)')
    @click.option('--profile', 'aws_profile', help='AWS credentials profile')
    @click.option('--region', 'aws_region', help='AWS region')
    @click.pass_context
    def list_remote(ctx, bucket_url, aws_profile, aws_region):
        """List remote objects with their MD5 checksums.

        Objects without a usable checksum (multipart uploads) show "-" and
        are always re-uploaded by sync when the key exists locally.

        Examples:
            python -m main remote list
            python -m main remote list -b s3://example.com/docs
        """
        verbose = ctx.obj['verbose']
        overrides = {
            'bucket_url': bucket_url,
            'aws_profile': aws_profile,
            'aws_region': aws_region,
        }

        try:
            config = load_app_config(ctx, overrides)
        except (FileNotFoundError, ConfigError) as e:
            handle_error(e, verbose)

        setup_logging(config, verbose)
        mirror_config = config.mirror

        try:
            with open_bucket(mirror_config.bucket_url,
                             profile=mirror_config.aws_profile,
                             region=mirror_config.aws_region) as bucket:
                objects = list(bucket.list_objects())
        except MirrorError as e:
            handle_error(e, verbose)

        if not objects:
            click.echo(f"No objects found in {mirror_config.bucket_url}")
            return

        table_data = [
            [obj.key, format_size(obj.size), obj.md5.hex() if obj.md5 else '-']
            for obj in objects
        ]
        headers = ['Key', 'Size', 'MD5']
        click.echo(tabulate(table_data, headers=headers, tablefmt='grid'))
        click.echo(f"\nTotal: {len(objects)} object(s)\n")
