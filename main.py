#!/usr/bin/env python3
"""Repo Mirror - publish the committed state of a git tree to object storage.

Examples:
    # Get help
    python -m main --help
    python -m main sync --help

    # Basic workflow
    python -m main config init           # Write mirror.json
    python -m main sync --dry-run        # Preview uploads
    python -m main sync                  # Upload changed files
    python -m main remote list           # Show remote checksums
"""

from cli.main import cli

if __name__ == '__main__':
    cli()
