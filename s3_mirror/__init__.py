"""S3 Mirror Module for Repo Mirror.

Publishes the committed state of a git working tree to object storage,
uploading only files whose content changed.
"""

from .bucket import Bucket, BucketURL, FileBucket, RemoteObject, S3Bucket, open_bucket
from .errors import (
    ArchiveReadError,
    BucketOpenError,
    EnumerationError,
    MirrorCancelled,
    MirrorError,
    SnapshotError,
    UploadError,
)
from .manager import IGNORED_FILES, Mirror, SyncResult
from .snapshot import ArchiveEntry, GitArchiveSource, SnapshotSource, TarStreamSource

__version__ = '1.0.0'
__all__ = [
    'Mirror',
    'SyncResult',
    'IGNORED_FILES',
    'Bucket',
    'BucketURL',
    'FileBucket',
    'RemoteObject',
    'S3Bucket',
    'open_bucket',
    'ArchiveEntry',
    'GitArchiveSource',
    'SnapshotSource',
    'TarStreamSource',
    'MirrorError',
    'BucketOpenError',
    'EnumerationError',
    'SnapshotError',
    'ArchiveReadError',
    'UploadError',
    'MirrorCancelled',
]
