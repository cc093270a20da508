"""
Shared fixtures for mirror tests.

Provides in-memory tar streams and an in-memory bucket so the sync pipeline
can run without git or AWS.
"""

from __future__ import annotations

import hashlib
import io
import tarfile
from typing import Dict, Iterable, Optional

import pytest

from s3_mirror.bucket import Bucket, RemoteObject
from s3_mirror.errors import EnumerationError, UploadError


def build_tar(files: Dict[str, bytes], dirs: Iterable[str] = (),
              symlinks: Optional[Dict[str, str]] = None,
              commit: Optional[str] = None) -> bytes:
    """Build a tar archive in memory, optionally with a git-style pax header."""
    buf = io.BytesIO()
    pax_headers = {'comment': commit} if commit else None
    with tarfile.open(fileobj=buf, mode='w', format=tarfile.PAX_FORMAT,
                      pax_headers=pax_headers) as tar:
        for name in dirs:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tar.addfile(info)
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class MemoryBucket(Bucket):
    """Bucket holding objects in a dict and recording every write."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None,
                 fail_list: bool = False, fail_write: bool = False):
        self.url = "mem://test"
        self.objects = dict(objects or {})
        self.no_checksum = set()
        self.writes = []
        self.fail_list = fail_list
        self.fail_write = fail_write
        self.closed = False

    def list_objects(self, cancel=None):
        for key, data in self.objects.items():
            if self.fail_list:
                raise EnumerationError("connection reset")
            md5 = None if key in self.no_checksum else hashlib.md5(data).digest()
            yield RemoteObject(key=key, size=len(data), md5=md5)

    def write_all(self, key, data, content_type=None):
        if self.fail_write:
            raise UploadError(key, "access denied")
        self.writes.append((key, data, content_type))
        self.objects[key] = data

    def close(self):
        self.closed = True

    @property
    def written_keys(self):
        return [key for key, _, _ in self.writes]


@pytest.fixture
def make_tar():
    """Factory returning tar bytes for {name: content}."""
    return build_tar


@pytest.fixture
def memory_bucket():
    return MemoryBucket()


@pytest.fixture
def bucket_opener():
    """Build an opener that hands out a given bucket and records its arguments."""
    def _factory(bucket: Bucket):
        calls = []

        def _open(url, profile=None, region=None):
            calls.append({'url': url, 'profile': profile, 'region': region})
            return bucket

        _open.calls = calls
        return _open
    return _factory
