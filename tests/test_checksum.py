"""Tests for ChecksumVerifier."""

import hashlib
import pytest

import xxhash

from backup_sentinel.checksum import ChecksumVerifier


@pytest.fixture
def sample(workspace):
    path = workspace / "sample.bin"
    # Larger than one read chunk
    path.write_bytes(b"0123456789" * 2000)
    return path


def test_sha256(sample):
    expected = hashlib.sha256(sample.read_bytes()).hexdigest()

    assert ChecksumVerifier().compute(sample) == f"sha256:{expected}"


@pytest.mark.parametrize("algorithm,hasher", [
    ("xxh64", xxhash.xxh64),
    ("xxh3_128", xxhash.xxh3_128),
])
def test_xxhash(sample, algorithm, hasher):
    expected = hasher(sample.read_bytes()).hexdigest()

    assert ChecksumVerifier(algorithm).compute(sample) == f"{algorithm}:{expected}"


def test_verify_uses_recorded_algorithm(sample):
    recorded = ChecksumVerifier("xxh64").compute(sample)

    # A sha256 verifier still checks an xxh64 checksum with xxh64
    assert ChecksumVerifier("sha256").verify(sample, recorded) is True


def test_verify_detects_change(sample):
    verifier = ChecksumVerifier()
    recorded = verifier.compute(sample)

    sample.write_bytes(b"tampered")

    assert verifier.verify(sample, recorded) is False


def test_invalid_inputs(sample):
    with pytest.raises(ValueError, match="Unsupported checksum algorithm"):
        ChecksumVerifier("md5")

    with pytest.raises(ValueError, match="Malformed checksum"):
        ChecksumVerifier().verify(sample, "deadbeef")

    with pytest.raises(ValueError, match="Unsupported checksum algorithm"):
        ChecksumVerifier().verify(sample, "crc32:1234")
