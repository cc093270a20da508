"""Mirror Manager - one-shot sync of a git tree into a bucket.

Remote objects are enumerated once, the tree is streamed through
``git archive`` and every tracked file whose MD5 differs from the remote
checksum under the same key is uploaded. Nothing is ever deleted remotely.
"""

import hashlib
import logging
import mimetypes
import posixpath
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from tqdm import tqdm

from .bucket import Bucket, open_bucket
from .errors import MirrorCancelled
from .snapshot import ArchiveEntry, GitArchiveSource, SnapshotSource

if TYPE_CHECKING:
    from config import MirrorConfig

logger = logging.getLogger(__name__)

IGNORED_FILES = frozenset({
    '.gitignore',
    '.gitattributes',
})


def guess_content_type(key: str) -> Optional[str]:
    """Content type for ``key`` from its extension, or None if unrecognized."""
    ext = posixpath.splitext(key)[1]
    if not ext:
        return None
    if not mimetypes.inited:
        mimetypes.init()
    return mimetypes.types_map.get(ext) or mimetypes.types_map.get(ext.lower())


@dataclass
class SyncResult:
    """Result of a mirror run."""
    uploaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)
    bytes_uploaded: int = 0
    remote_objects: int = 0
    revision: Optional[str] = None
    dry_run: bool = False

    @property
    def upload_count(self) -> int:
        return len(self.uploaded)


class Mirror:
    """Mirrors the committed state of a git working tree into a bucket."""

    def __init__(
        self,
        config: "MirrorConfig",
        snapshot_source: Optional[SnapshotSource] = None,
        bucket_opener: Callable[..., Bucket] = open_bucket,
        dry_run: bool = False,
        show_progress: bool = False
    ):
        """
        Args:
            config: Validated mirror configuration
            snapshot_source: Source of archive entries; defaults to
                ``git archive`` of ``config.source_dir`` at ``config.revision``
            bucket_opener: Callable(url, profile=, region=) returning a Bucket
            dry_run: Report what would be uploaded without writing
            show_progress: Show a progress bar over archive entries
        """
        self.config = config
        self.snapshot_source = snapshot_source
        self.bucket_opener = bucket_opener
        self.dry_run = dry_run
        self.show_progress = show_progress

    def _make_source(self) -> SnapshotSource:
        if self.snapshot_source is not None:
            return self.snapshot_source
        return GitArchiveSource(
            self.config.git_path,
            self.config.source_dir,
            revision=self.config.revision
        )

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event], stage: str):
        if cancel is not None and cancel.is_set():
            raise MirrorCancelled(stage)

    def run(self, cancel: Optional[threading.Event] = None) -> SyncResult:
        """Run one synchronization.

        Args:
            cancel: Optional event; once set, the run stops at the next
                bucket call or archive entry with MirrorCancelled

        Returns:
            SyncResult describing what was uploaded and skipped

        Raises:
            MirrorError: On the first failure of any stage. Objects uploaded
                before the failure stay in the bucket.
        """
        result = SyncResult(dry_run=self.dry_run)

        self._check_cancel(cancel, "open bucket")
        with self.bucket_opener(
            self.config.bucket_url,
            profile=self.config.aws_profile,
            region=self.config.aws_region
        ) as bucket:
            hashes = bucket.list_checksums(cancel)
            result.remote_objects = len(hashes)
            logger.info(f"Found {len(hashes)} remote objects with checksums")

            with self._make_source() as source:
                self._sync_entries(bucket, source, hashes, result, cancel)
                result.revision = source.revision

        if result.revision:
            logger.info(f"Mirrored revision {result.revision}")
        logger.info(
            f"Sync complete: {result.upload_count} uploaded "
            f"({result.bytes_uploaded} bytes), {len(result.skipped)} unchanged"
        )
        return result

    def _sync_entries(self, bucket: Bucket, source: SnapshotSource,
                      hashes: Dict[str, bytes], result: SyncResult,
                      cancel: Optional[threading.Event]):
        with tqdm(unit='file', desc="Mirroring", disable=not self.show_progress,
                  leave=False) as pbar:
            for entry in source.entries():
                self._check_cancel(cancel, "read file")
                pbar.update(1)

                if not entry.is_file:
                    continue
                if entry.name in IGNORED_FILES:
                    logger.debug(f"ignoring {entry.name}")
                    result.ignored.append(entry.name)
                    continue

                self._sync_entry(bucket, entry, hashes, result, cancel)

    def _sync_entry(self, bucket: Bucket, entry: ArchiveEntry,
                    hashes: Dict[str, bytes], result: SyncResult,
                    cancel: Optional[threading.Event]):
        remote_sum = hashes.get(entry.name)
        if remote_sum is not None:
            local_sum = hashlib.md5(entry.content).digest()
            if local_sum == remote_sum:
                logger.info(f"skipping {entry.name}…")
                result.skipped.append(entry.name)
                return

        content_type = guess_content_type(entry.name)

        if self.dry_run:
            logger.info(f"would upload {entry.name}…")
        else:
            logger.info(f"uploading {entry.name}…")
            self._check_cancel(cancel, "upload file")
            bucket.write_all(entry.name, entry.content, content_type=content_type)

        result.uploaded.append(entry.name)
        result.bytes_uploaded += len(entry.content)
