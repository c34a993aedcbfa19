"""Tests for checksum functionality."""

import base64
import hashlib
import io

import pytest

from snowball_sync.checksum import HASH_PREFIX, ChecksumCalculator, HashingReader, format_hash


class TestChecksumCalculator:
    """Test checksum calculation functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.calculator = ChecksumCalculator()

    def test_sha256_known_answer(self, tmp_path):
        """Test SHA256 calculation against a known answer."""
        fixture_path = tmp_path / "small.txt"
        fixture_path.write_bytes(b"Hello, HCA World! This is a test file for checksum validation.")
        expected_sha256 = "5829c2cba87286e32a50f6a136c00eec2970c4b881f52875809622edc6a221a5"

        actual_sha256 = self.calculator.calculate_sha256(fixture_path)

        assert actual_sha256 == expected_sha256
        assert len(actual_sha256) == 64

    def test_hash_token_known_answer(self, tmp_path):
        """Manifest hash tokens are the base64 form of the same digest."""
        fixture_path = tmp_path / "small.txt"
        fixture_path.write_bytes(b"Hello, HCA World! This is a test file for checksum validation.")
        digest = bytes.fromhex("5829c2cba87286e32a50f6a136c00eec2970c4b881f52875809622edc6a221a5")

        token = self.calculator.calculate_hash(fixture_path)

        assert token.startswith(HASH_PREFIX)
        assert base64.b64decode(token[len(HASH_PREFIX):]) == digest

    @pytest.mark.parametrize("size", [0, 1, 8191, 8192, 8193, 8192 * 2 + 100])
    def test_chunk_boundaries(self, tmp_path, size):
        """Test files around the 8192 byte chunk size."""
        content = bytes(i % 251 for i in range(size))
        file_path = tmp_path / f"boundary_{size}.bin"
        file_path.write_bytes(content)

        assert self.calculator.calculate_sha256(file_path) == hashlib.sha256(content).hexdigest()
        assert self.calculator.calculate_hash(file_path) == format_hash(hashlib.sha256(content).digest())

    def test_hash_bytes_matches_file_hash(self, tmp_path):
        file_path = tmp_path / "data.bin"
        file_path.write_bytes(b"some bytes")

        assert self.calculator.hash_bytes(b"some bytes") == self.calculator.calculate_hash(file_path)

    def test_checksum_verification(self, tmp_path):
        """Test verification against both hex digests and hash tokens."""
        file_path = tmp_path / "verify.txt"
        file_path.write_bytes(b"verify me")
        hex_digest = hashlib.sha256(b"verify me").hexdigest()

        assert self.calculator.verify_checksum(file_path, hex_digest) is True
        assert self.calculator.verify_checksum(file_path, hex_digest.upper()) is True
        assert self.calculator.verify_checksum(file_path, self.calculator.hash_bytes(b"verify me")) is True
        assert self.calculator.verify_checksum(file_path, "0" * 64) is False
        assert self.calculator.verify_checksum(file_path, self.calculator.hash_bytes(b"other")) is False


class TestHashingReader:
    """Test hashing while a stream is read."""

    def test_digest_matches_content(self):
        content = b"x" * 20_000
        reader = HashingReader(io.BytesIO(content))

        chunks = []
        while True:
            chunk = reader.read(4096)
            if not chunk:
                break
            chunks.append(chunk)

        assert b"".join(chunks) == content
        assert reader.bytes_read == len(content)
        assert reader.digest() == ChecksumCalculator().hash_bytes(content)

    def test_not_seekable(self):
        assert HashingReader(io.BytesIO(b"abc")).seekable() is False

    def test_close_closes_stream(self):
        stream = io.BytesIO(b"abc")
        HashingReader(stream).close()

        assert stream.closed
