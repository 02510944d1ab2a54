"""Tests for file checksums."""

import hashlib

from turingpi.imageops.checksum import (
    CHUNK_SIZE,
    compute_file_checksum,
    directory_checksums,
    verify_directory,
    verify_file_checksum,
    write_checksum_file,
)


class TestChecksums:
    """Test file and tree checksums."""

    def test_large_file(self, tmp_path):
        """Test files larger than one chunk hash correctly."""
        data = b"turing" * (CHUNK_SIZE // 3)
        path = tmp_path / "blob"
        path.write_bytes(data)

        checksum = compute_file_checksum(path)

        assert checksum.hash == hashlib.sha256(data).hexdigest()
        assert checksum.size == len(data)
        assert verify_file_checksum(path, checksum)

        path.write_bytes(data[:-1] + b"!")
        assert not verify_file_checksum(path, checksum)

    def test_verify_directory(self, tmp_path):
        """Test missing, modified and unexpected files are reported."""
        (tmp_path / "etc").mkdir()
        (tmp_path / "etc" / "hostname").write_text("node1\n")
        (tmp_path / "etc" / "hosts").write_text("127.0.0.1 localhost\n")
        expected = directory_checksums(tmp_path)

        assert sorted(expected) == ["etc/hostname", "etc/hosts"]
        assert verify_directory(tmp_path, expected) == []

        (tmp_path / "etc" / "hostname").write_text("node2\n")
        (tmp_path / "etc" / "hosts").unlink()
        (tmp_path / "etc" / "motd").write_text("hi\n")

        assert verify_directory(tmp_path, expected) == [
            "modified: etc/hostname",
            "missing: etc/hosts",
            "unexpected: etc/motd",
        ]

    def test_sidecar(self, tmp_path):
        """Test the sidecar uses sha256sum format."""
        artefact = tmp_path / "node1.img.xz"
        artefact.write_bytes(b"\xfd7zXZ\x00")

        sidecar = write_checksum_file(artefact)

        assert sidecar.name == "node1.img.xz.sha256"
        digest = hashlib.sha256(b"\xfd7zXZ\x00").hexdigest()
        assert sidecar.read_text() == f"{digest}  node1.img.xz\n"
