"""
Tests for in-memory build context archives.
"""

import io
import tarfile

from mqharness.core.archive import FILE_MODE, generate_tar
from mqharness.domain.models import BuildFile


def _open(data: bytes) -> tarfile.TarFile:
    return tarfile.open(fileobj=io.BytesIO(data), mode="r")


class TestGenerateTar:
    """Tests for generate_tar."""

    def test_single_dockerfile(self):
        """A single file should produce a single 0600 entry with its body."""
        data = generate_tar([BuildFile(name="Dockerfile", body="FROM scratch")])

        with _open(data) as tar:
            members = tar.getmembers()
            assert [m.name for m in members] == ["Dockerfile"]
            assert members[0].mode == 0o600
            assert members[0].size == len("FROM scratch")
            assert tar.extractfile(members[0]).read() == b"FROM scratch"

    def test_file_mode_constant(self):
        assert FILE_MODE == 0o600

    def test_multiple_files_keep_order(self):
        """Files should be archived in the order given."""
        files = [
            BuildFile(name="Dockerfile", body="FROM mq\nCOPY *.mqsc /etc/mqm/"),
            BuildFile(name="test.mqsc", body="DEFINE QLOCAL(TEST)"),
        ]
        with _open(generate_tar(files)) as tar:
            assert tar.getnames() == ["Dockerfile", "test.mqsc"]

    def test_empty_body(self):
        """Empty files are still archived."""
        with _open(generate_tar([BuildFile(name="empty")])) as tar:
            assert tar.getmember("empty").size == 0

    def test_size_counts_bytes_not_characters(self):
        """Size must be the encoded length for non-ASCII bodies."""
        body = "# café"
        with _open(generate_tar([BuildFile(name="notes", body=body)])) as tar:
            assert tar.getmember("notes").size == len(body.encode("utf-8"))

    def test_mapping_file_set(self):
        """A name -> body mapping is archived like the equivalent BuildFile list."""
        files = {"Dockerfile": "FROM scratch", "test.mqsc": "DEFINE QLOCAL(TEST)"}
        with _open(generate_tar(files)) as tar:
            assert tar.getnames() == ["Dockerfile", "test.mqsc"]
            assert tar.extractfile("test.mqsc").read() == b"DEFINE QLOCAL(TEST)"
            assert all(m.mode == FILE_MODE for m in tar.getmembers())
