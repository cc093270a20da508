"""
Tests for s3_mirror.snapshot

Tar streams are built in memory; the git process is mocked except for one
end-to-end test that runs against a real repository when git is installed.
"""

import io
import shutil
import subprocess
import sys
from pathlib import Path
from unittest import mock

import pytest

from config import MirrorConfig
from s3_mirror.bucket import open_bucket
from s3_mirror.errors import ArchiveReadError, SnapshotError
from s3_mirror.manager import Mirror
from s3_mirror.snapshot import (
    KIND_DIR,
    KIND_FILE,
    KIND_SYMLINK,
    GitArchiveSource,
    TarStreamSource,
)

from conftest import build_tar


def _fake_process(stdout: bytes, returncode: int = 0, running: bool = False):
    process = mock.MagicMock()
    process.stdout = io.BytesIO(stdout)
    process.pid = 4242
    process.wait.return_value = returncode
    process.poll.return_value = None if running else returncode
    return process


class _RecordingStream(io.BytesIO):
    """Remembers how far it had been read when closed."""

    position_at_close = None

    def close(self):
        if not self.closed:
            self.position_at_close = self.tell()
        super().close()


# ---------------------------------------------------------------------------
# TarStreamSource
# ---------------------------------------------------------------------------

class TestTarStreamSource:

    def test_entries_in_archive_order(self):
        data = build_tar({"docs/a.txt": b"alpha"}, dirs=["docs/"],
                         symlinks={"link": "docs/a.txt"})

        with TarStreamSource(io.BytesIO(data)) as source:
            entries = list(source.entries())

        assert [(e.name, e.kind) for e in entries] == [
            ("docs", KIND_DIR),
            ("link", KIND_SYMLINK),
            ("docs/a.txt", KIND_FILE),
        ]
        assert entries[2].content == b"alpha"
        assert entries[0].content == b""

    def test_revision_from_pax_comment(self):
        data = build_tar({"a.txt": b"a"}, commit="0123456789abcdef")

        source = TarStreamSource(io.BytesIO(data))
        list(source.entries())

        assert source.revision == "0123456789abcdef"
        assert source.exhausted

    def test_revision_unknown_without_header(self):
        source = TarStreamSource(io.BytesIO(build_tar({"a.txt": b"a"})))
        list(source.entries())

        assert source.revision is None

    def test_garbage_stream_raises(self):
        source = TarStreamSource(io.BytesIO(b"this is not a tar archive" * 40))

        with pytest.raises(ArchiveReadError) as exc_info:
            list(source.entries())

        assert exc_info.value.entry is None

    def test_empty_stream_raises(self):
        with pytest.raises(ArchiveReadError):
            list(TarStreamSource(io.BytesIO(b"")).entries())

    def test_truncated_content_names_entry(self):
        data = build_tar({"big.bin": b"x" * 2000})
        source = TarStreamSource(io.BytesIO(data[:1512]))

        with pytest.raises(ArchiveReadError, match='read file: "big.bin"') as exc_info:
            list(source.entries())

        assert exc_info.value.entry == "big.bin"


# ---------------------------------------------------------------------------
# GitArchiveSource
# ---------------------------------------------------------------------------

class TestGitArchiveSource:

    @mock.patch("s3_mirror.snapshot.subprocess.Popen")
    def test_runs_git_archive_in_source_dir(self, mock_popen, tmp_path):
        mock_popen.return_value = _fake_process(build_tar({"a.txt": b"a"}))

        with GitArchiveSource("/usr/bin/git", tmp_path) as source:
            entries = list(source.entries())

        assert [e.name for e in entries] == ["a.txt"]
        args, kwargs = mock_popen.call_args
        assert args[0] == ["/usr/bin/git", "archive", "--format=tar", "HEAD"]
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["stderr"] is None
        assert kwargs["env"] == {}

    @mock.patch("s3_mirror.snapshot.subprocess.Popen")
    def test_custom_revision(self, mock_popen, tmp_path):
        mock_popen.return_value = _fake_process(build_tar({}))

        with GitArchiveSource("git", tmp_path, revision="v1.2.0") as source:
            list(source.entries())

        assert mock_popen.call_args[0][0][-1] == "v1.2.0"

    @mock.patch("s3_mirror.snapshot.subprocess.Popen")
    def test_start_failure(self, mock_popen, tmp_path):
        mock_popen.side_effect = FileNotFoundError("No such file: /usr/bin/git")

        with pytest.raises(SnapshotError) as exc_info:
            GitArchiveSource("/usr/bin/git", tmp_path).start()

        assert exc_info.value.stage == "start git"

    @mock.patch("s3_mirror.snapshot.subprocess.Popen")
    def test_nonzero_exit_after_clean_stream(self, mock_popen, tmp_path):
        mock_popen.return_value = _fake_process(build_tar({"a.txt": b"a"}), returncode=1)

        with pytest.raises(SnapshotError) as exc_info:
            with GitArchiveSource("/usr/bin/git", tmp_path) as source:
                list(source.entries())

        assert exc_info.value.stage == "git archive"
        assert "status 1" in str(exc_info.value)

    @mock.patch("s3_mirror.snapshot.subprocess.Popen")
    def test_empty_output_reports_git_failure(self, mock_popen, tmp_path):
        """git prints 'not a git repository' to stderr and exits 128."""
        mock_popen.return_value = _fake_process(b"", returncode=128)

        with pytest.raises(SnapshotError) as exc_info:
            with GitArchiveSource("/usr/bin/git", tmp_path) as source:
                list(source.entries())

        assert "status 128" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ArchiveReadError)

    @mock.patch("s3_mirror.snapshot.subprocess.Popen")
    def test_early_close_terminates_git(self, mock_popen, tmp_path):
        process = _fake_process(build_tar({"a.txt": b"a", "b.txt": b"b"}), running=True)
        mock_popen.return_value = process

        with GitArchiveSource("/usr/bin/git", tmp_path) as source:
            next(source.entries())

        process.terminate.assert_called_once()
        process.wait.assert_called()

    @mock.patch("s3_mirror.snapshot.subprocess.Popen")
    def test_trailing_padding_is_drained_before_wait(self, mock_popen, tmp_path):
        """git can write a second padding record after the end-of-archive marker."""
        data = build_tar({"a.txt": b"a"}) + bytes(10240)
        process = _fake_process(b"")
        process.stdout = _RecordingStream(data)
        mock_popen.return_value = process

        with GitArchiveSource("/usr/bin/git", tmp_path) as source:
            list(source.entries())

        assert process.stdout.position_at_close == len(data)
        process.terminate.assert_not_called()

    def test_close_without_start_is_noop(self, tmp_path):
        GitArchiveSource("/usr/bin/git", tmp_path).close()


# ---------------------------------------------------------------------------
# End to end against a real repository
# ---------------------------------------------------------------------------

GIT = shutil.which("git")


def _git(repo: Path, *args):
    subprocess.run(
        [GIT, "-c", "user.name=Mirror Test", "-c", "user.email=mirror@example.com",
         "-c", "commit.gpgsign=false", *args],
        cwd=str(repo), check=True, capture_output=True,
    )


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
def test_late_padding_from_git_does_not_fail_sync(tmp_path):
    """A stand-in git that pauses before writing its last padding record."""
    archive = tmp_path / "site.tar"
    archive.write_bytes(build_tar({"index.html": b"<h1>hi</h1>"}))
    fake_git = tmp_path / "git"
    fake_git.write_text(
        "#!/bin/sh\n"
        f"{shutil.which('cat')} '{archive}'\n"
        f"{shutil.which('sleep')} 0.5\n"
        f"{shutil.which('head')} -c 10240 /dev/zero\n"
    )
    fake_git.chmod(0o755)
    dest = tmp_path / "bucket"
    dest.mkdir()
    config = MirrorConfig(git_path=str(fake_git), source_dir=str(tmp_path),
                          bucket_url=f"file://{dest}")

    result = Mirror(config).run()

    assert result.uploaded == ["index.html"]


@pytest.mark.skipif(GIT is None, reason="git not installed")
def test_sync_real_repository_to_file_bucket(tmp_path):
    repo = tmp_path / "site"
    repo.mkdir()
    (repo / "index.html").write_text("<h1>hello</h1>")
    (repo / "css").mkdir()
    (repo / "css" / "site.css").write_text("body { margin: 0 }")
    (repo / ".gitignore").write_text("*.log\n")
    _git(repo, "init", "-q")
    _git(repo, "add", "-A")
    _git(repo, "commit", "-q", "-m", "initial")
    (repo / "untracked.txt").write_text("not committed")

    dest = tmp_path / "bucket"
    dest.mkdir()
    config = MirrorConfig(git_path=GIT, source_dir=str(repo), bucket_url=f"file://{dest}")

    first = Mirror(config).run()
    second = Mirror(config).run()

    assert sorted(first.uploaded) == ["css/site.css", "index.html"]
    assert first.revision is not None
    assert second.uploaded == []
    assert sorted(second.skipped) == ["css/site.css", "index.html"]
    assert not (dest / "untracked.txt").exists()
    assert not (dest / ".gitignore").exists()
    with open_bucket(f"file://{dest}") as bucket:
        assert bucket.read_attrs("css/site.css")["content_type"] == "text/css"
