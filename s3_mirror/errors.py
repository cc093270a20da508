"""
Exception classes for mirror runs.

Every failure carries the pipeline stage it happened in.
"""


class MirrorError(RuntimeError):
    """Base exception for all mirror failures.

    Attributes:
        stage: Pipeline stage that failed (e.g. "open bucket")
    """

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"{stage}: {message}")


class BucketOpenError(MirrorError):
    """Raised when the destination bucket cannot be opened or reached."""

    def __init__(self, message: str):
        super().__init__("open bucket", message)


class EnumerationError(MirrorError):
    """Raised when listing the remote objects fails part way."""

    def __init__(self, message: str):
        super().__init__("list objects", message)


class SnapshotError(MirrorError):
    """Raised when the local snapshot cannot be produced."""
    pass


class ArchiveReadError(MirrorError):
    """
    Raised when an archive entry cannot be read.

    Attributes:
        entry: Name of the offending entry, if known
    """

    def __init__(self, message: str, entry: str = None):
        self.entry = entry
        if entry:
            super().__init__("read file", f'"{entry}": {message}')
        else:
            super().__init__("get next file in tar", message)


class UploadError(MirrorError):
    """Raised when writing an object to the bucket fails."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__("upload file", f'"{key}": {message}')


class MirrorCancelled(MirrorError):
    """Raised when a run is cancelled through its cancel event."""

    def __init__(self, stage: str):
        super().__init__(stage, "cancelled")
