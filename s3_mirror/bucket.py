"""Object-storage buckets addressed by URL.

Supported locators:

    s3://bucket-name                  whole bucket
    s3://bucket-name/site/prefix      keys are stored under "site/prefix/"
    s3://bucket-name?region=eu-west-1 query options override configured values
    file:///srv/mirror                directory-backed bucket (testing, staging)

Checksums are raw 16-byte MD5 digests. Objects whose checksum cannot be
known (S3 multipart uploads, SSE-KMS) report none and are never matched.
"""

import base64
import binascii
import hashlib
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Optional
from urllib.parse import parse_qs, unquote, urlsplit

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BucketOpenError, EnumerationError, MirrorCancelled, UploadError

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ('s3', 'file')
ATTRS_DIR = '.attrs'


@dataclass(frozen=True)
class RemoteObject:
    """A listed object. ``md5`` is None when the backend cannot report one."""
    key: str
    size: int = 0
    md5: Optional[bytes] = None


@dataclass(frozen=True)
class BucketURL:
    """Parsed bucket locator."""
    scheme: str
    bucket: str
    prefix: str = ''
    options: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, url: str) -> "BucketURL":
        """Parse a bucket locator.

        Raises:
            ValueError: If the URL has no scheme, an unsupported scheme or no bucket
        """
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if not scheme:
            raise ValueError(f"Bucket URL has no scheme: {url!r}")
        if scheme not in SUPPORTED_SCHEMES:
            raise ValueError(
                f"Unsupported bucket scheme {scheme!r} in {url!r} "
                f"(supported: {', '.join(SUPPORTED_SCHEMES)})"
            )

        options = {k: v[-1] for k, v in parse_qs(parts.query).items()}

        if scheme == 'file':
            path = unquote(parts.path)
            if parts.netloc and parts.netloc != 'localhost':
                # file://relative/dir
                path = parts.netloc + path
            if not path:
                raise ValueError(f"file:// URL has no path: {url!r}")
            return cls(scheme=scheme, bucket=path, options=options)

        if not parts.netloc:
            raise ValueError(f"Bucket URL has no bucket name: {url!r}")

        prefix = unquote(parts.path).strip('/')
        if prefix:
            prefix += '/'
        return cls(scheme=scheme, bucket=parts.netloc, prefix=prefix, options=options)


def md5_from_etag(etag: Optional[str]) -> Optional[bytes]:
    """Convert an S3 ETag to a raw MD5 digest.

    Only single-part, non-KMS uploads have an ETag that is the content MD5;
    anything else returns None.
    """
    if not etag:
        return None
    etag = etag.strip('"')
    if len(etag) != 32 or '-' in etag:
        return None
    try:
        return binascii.unhexlify(etag)
    except (binascii.Error, ValueError):
        return None


def _check_cancel(cancel: Optional[threading.Event], stage: str):
    if cancel is not None and cancel.is_set():
        raise MirrorCancelled(stage)


class Bucket(ABC):
    """Minimal object-storage interface used by the mirror."""

    url: str = ''

    @abstractmethod
    def list_objects(self, cancel: Optional[threading.Event] = None) -> Iterator[RemoteObject]:
        """Yield every object in the bucket (under its prefix)."""

    @abstractmethod
    def write_all(self, key: str, data: bytes, content_type: Optional[str] = None):
        """Create or overwrite ``key`` with ``data``."""

    def list_checksums(self, cancel: Optional[threading.Event] = None) -> Dict[str, bytes]:
        """Map key -> MD5 for every object that reports a checksum.

        Raises:
            EnumerationError: If listing fails part way
        """
        checksums = {}
        for obj in self.list_objects(cancel):
            if obj.md5 is not None:
                checksums[obj.key] = obj.md5
        return checksums

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class S3Bucket(Bucket):
    """Bucket backed by AWS S3 through boto3."""

    def __init__(self, url: BucketURL, profile: Optional[str] = None,
                 region: Optional[str] = None, client=None):
        self.url = f"s3://{url.bucket}/{url.prefix}"
        self.bucket = url.bucket
        self.prefix = url.prefix
        self.profile = url.options.get('profile') or profile or None
        self.region = url.options.get('region') or region or None

        if client is None:
            client = self._create_client()
        self.s3_client = client

        self._verify_bucket_access()
        logger.info(f"Opened bucket: {self.url}")

    def _create_client(self):
        try:
            session = boto3.Session(profile_name=self.profile, region_name=self.region)
            boto_config = BotoConfig(
                region_name=self.region,
                retries={'max_attempts': 1, 'mode': 'standard'}
            )
            return session.client('s3', config=boto_config)
        except BotoCoreError as e:
            raise BucketOpenError(str(e)) from e

    def _verify_bucket_access(self):
        """Verify we can access the S3 bucket."""
        try:
            self.s3_client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            if error_code in ('404', 'NoSuchBucket'):
                raise BucketOpenError(f"Bucket not found: {self.bucket}") from e
            elif error_code in ('403', 'AccessDenied'):
                raise BucketOpenError(f"Access denied to bucket: {self.bucket}") from e
            raise BucketOpenError(f"Error accessing bucket {self.bucket}: {e}") from e
        except BotoCoreError as e:
            raise BucketOpenError(str(e)) from e

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def list_objects(self, cancel: Optional[threading.Event] = None) -> Iterator[RemoteObject]:
        paginator = self.s3_client.get_paginator('list_objects_v2')
        params = {'Bucket': self.bucket}
        if self.prefix:
            params['Prefix'] = self.prefix

        try:
            for page in paginator.paginate(**params):
                _check_cancel(cancel, "list objects")
                for obj in page.get('Contents', []):
                    key = obj['Key'][len(self.prefix):]
                    if not key:
                        continue
                    yield RemoteObject(
                        key=key,
                        size=obj.get('Size', 0),
                        md5=md5_from_etag(obj.get('ETag')),
                    )
        except (ClientError, BotoCoreError) as e:
            raise EnumerationError(str(e)) from e

    def write_all(self, key: str, data: bytes, content_type: Optional[str] = None):
        # tarfile hands back undecodable names with surrogate escapes
        try:
            key.encode('utf-8')
        except UnicodeEncodeError as e:
            raise UploadError(key, f"Key is not valid UTF-8: {e}") from e

        params = {
            'Bucket': self.bucket,
            'Key': self._key(key),
            'Body': data,
            'ContentMD5': base64.b64encode(hashlib.md5(data).digest()).decode('ascii'),
        }
        if content_type:
            params['ContentType'] = content_type

        try:
            self.s3_client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise UploadError(key, str(e)) from e

    def close(self):
        close = getattr(self.s3_client, 'close', None)
        if close is not None:
            close()


class FileBucket(Bucket):
    """Directory-backed bucket.

    Each object ``key`` is stored as the file ``<root>/key``. Its MD5 and
    content type live in a JSON file at the same relative path under
    ``<root>/.attrs/``, so attributes never share a name with an object.
    Keys inside that directory are rejected.
    """

    def __init__(self, url: BucketURL):
        self.root = Path(url.bucket)
        self.url = f"file://{self.root}"
        if not self.root.is_dir():
            raise BucketOpenError(f"Bucket directory not found: {self.root}")
        self.attrs_root = self.root / ATTRS_DIR
        logger.info(f"Opened bucket: {self.url}")

    def _path(self, key: str) -> Path:
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise ValueError(f"Key escapes bucket directory: {key!r}")
        attrs_root = root / ATTRS_DIR
        if path == attrs_root or attrs_root in path.parents:
            raise ValueError(f"Key is reserved for object attributes: {key!r}")
        return path

    def _attrs_path(self, key: str) -> Path:
        path = self._path(key)
        return self.attrs_root.resolve() / path.relative_to(self.root.resolve())

    def read_attrs(self, key: str) -> dict:
        attrs_path = self._attrs_path(key)
        if not attrs_path.is_file():
            return {}
        with open(attrs_path, 'r') as f:
            return json.load(f)

    def list_objects(self, cancel: Optional[threading.Event] = None) -> Iterator[RemoteObject]:
        try:
            for dirpath, dirnames, filenames in os.walk(self.root):
                _check_cancel(cancel, "list objects")
                if Path(dirpath) == self.root and ATTRS_DIR in dirnames:
                    dirnames.remove(ATTRS_DIR)
                dirnames.sort()
                for name in sorted(filenames):
                    path = Path(dirpath) / name
                    key = path.relative_to(self.root).as_posix()

                    attrs = self.read_attrs(key)
                    if attrs.get('md5'):
                        md5 = base64.b64decode(attrs['md5'])
                    else:
                        md5 = hashlib.md5(path.read_bytes()).digest()

                    yield RemoteObject(key=key, size=path.stat().st_size, md5=md5)
        except (OSError, ValueError) as e:
            raise EnumerationError(str(e)) from e

    def write_all(self, key: str, data: bytes, content_type: Optional[str] = None):
        try:
            path = self._path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

            attrs = {'md5': base64.b64encode(hashlib.md5(data).digest()).decode('ascii')}
            if content_type:
                attrs['content_type'] = content_type
            attrs_path = self._attrs_path(key)
            attrs_path.parent.mkdir(parents=True, exist_ok=True)
            with open(attrs_path, 'w') as f:
                json.dump(attrs, f)
        except (OSError, ValueError) as e:
            raise UploadError(key, str(e)) from e


def open_bucket(url: str, profile: Optional[str] = None,
                region: Optional[str] = None) -> Bucket:
    """Open the bucket named by ``url``.

    Profile and region are handed to the storage client directly; the
    process environment is never touched.

    Raises:
        BucketOpenError: If the URL is invalid or the bucket cannot be reached
    """
    try:
        parsed = BucketURL.parse(url)
    except ValueError as e:
        raise BucketOpenError(str(e)) from e

    if parsed.scheme == 's3':
        return S3Bucket(parsed, profile=profile, region=region)
    return FileBucket(parsed)
