"""Local snapshot extraction.

A snapshot is the ordered stream of files tracked at a given revision. It is
produced by ``git archive`` rather than by walking the working directory, so
untracked and ignored files never reach the bucket.
"""

import logging
import subprocess
import tarfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from .errors import ArchiveReadError, SnapshotError

logger = logging.getLogger(__name__)

KIND_FILE = 'file'
KIND_DIR = 'dir'
KIND_SYMLINK = 'symlink'
KIND_OTHER = 'other'

DRAIN_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ArchiveEntry:
    """A single entry read from a snapshot."""
    name: str
    kind: str
    content: bytes = b''

    @property
    def is_file(self) -> bool:
        return self.kind == KIND_FILE


def _member_kind(member: tarfile.TarInfo) -> str:
    if member.isreg():
        return KIND_FILE
    if member.isdir():
        return KIND_DIR
    if member.issym():
        return KIND_SYMLINK
    return KIND_OTHER


class SnapshotSource(ABC):
    """Produces the entries of a tree at one revision.

    Sources are context managers; leaving the block releases whatever backs
    the stream (a pipe, a subprocess).
    """

    @property
    def revision(self) -> Optional[str]:
        """Commit id the snapshot was taken at, when the source knows it."""
        return None

    @abstractmethod
    def entries(self) -> Iterator[ArchiveEntry]:
        """Yield entries in archive order."""

    def close(self, check: bool = True):
        """Release the source. ``check=False`` skips any exit-status checks."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close(check=exc_type is None)
        return False


class TarStreamSource(SnapshotSource):
    """Reads entries from a tar stream without seeking."""

    def __init__(self, fileobj: Optional[BinaryIO] = None):
        self.fileobj = fileobj
        self.exhausted = False
        self._tar = None

    @property
    def revision(self) -> Optional[str]:
        # git archive stores the commit id in the pax global header
        if self._tar is None:
            return None
        return self._tar.pax_headers.get('comment')

    def _open_tar(self) -> tarfile.TarFile:
        try:
            return tarfile.open(fileobj=self.fileobj, mode='r|')
        except (tarfile.TarError, OSError) as e:
            raise ArchiveReadError(str(e)) from e

    def entries(self) -> Iterator[ArchiveEntry]:
        if self._tar is None:
            self._tar = self._open_tar()
        tar = self._tar

        while True:
            try:
                member = tar.next()
            except (tarfile.TarError, OSError) as e:
                raise ArchiveReadError(str(e)) from e
            if member is None:
                break

            kind = _member_kind(member)
            if kind != KIND_FILE:
                yield ArchiveEntry(name=member.name, kind=kind)
                continue

            try:
                handle = tar.extractfile(member)
                content = handle.read() if handle is not None else b''
            except (tarfile.TarError, OSError) as e:
                raise ArchiveReadError(str(e), entry=member.name) from e

            yield ArchiveEntry(name=member.name, kind=kind, content=content)

        self.exhausted = True

    def close(self, check: bool = True):
        if self._tar is not None:
            self._tar.close()


class GitArchiveSource(TarStreamSource):
    """Streams ``git archive --format=tar <revision>`` from a working tree.

    git's own diagnostics go straight to our stderr. The process exit status
    is checked once the stream has been read to the end; a source closed
    early (error, cancellation) terminates git instead.
    """

    def __init__(self, git_path: str, source_dir: Path, revision: str = 'HEAD'):
        super().__init__()
        self.git_path = str(git_path)
        self.source_dir = Path(source_dir)
        self.treeish = revision
        self.process: Optional[subprocess.Popen] = None

    @property
    def command(self):
        return [self.git_path, 'archive', '--format=tar', self.treeish]

    def start(self):
        """Start git. Safe to call more than once."""
        if self.process is not None:
            return self

        logger.debug(f"Running {' '.join(self.command)} in {self.source_dir}")
        try:
            self.process = subprocess.Popen(
                self.command,
                cwd=str(self.source_dir),
                stdout=subprocess.PIPE,
                stderr=None,
                env={},
            )
        except (OSError, ValueError) as e:
            raise SnapshotError("start git", str(e)) from e

        self.fileobj = self.process.stdout
        return self

    def __enter__(self):
        return self.start()

    def _exit_error(self, returncode: int) -> SnapshotError:
        return SnapshotError(
            "git archive",
            f"{self.git_path} exited with status {returncode} in {self.source_dir}"
        )

    def entries(self) -> Iterator[ArchiveEntry]:
        self.start()
        try:
            yield from super().entries()
        except ArchiveReadError as e:
            # An empty or truncated stream usually means git itself failed
            try:
                returncode = self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                returncode = None
            if returncode:
                raise self._exit_error(returncode) from e
            raise

    def close(self, check: bool = True):
        if self.process is None:
            return

        process = self.process
        self.process = None
        super().close(check)

        if not self.exhausted:
            if process.poll() is None:
                logger.debug(f"Terminating git archive (pid {process.pid})")
                process.terminate()
            process.stdout.close()
            process.wait()
            return

        # tarfile stops at the end-of-archive marker; git can still be
        # writing block padding, and closing the pipe now would kill it.
        while process.stdout.read(DRAIN_CHUNK_SIZE):
            pass
        process.stdout.close()
        returncode = process.wait()
        if check and returncode != 0:
            raise self._exit_error(returncode)
