"""Content digests for backup artifacts."""

import hashlib
from pathlib import Path
from typing import Callable, Dict, Optional

import xxhash

CHUNK_SIZE = 8192

SUPPORTED_ALGORITHMS: Dict[str, Callable] = {
    "sha256": hashlib.sha256,
    "xxh64": xxhash.xxh64,
    "xxh3_128": xxhash.xxh3_128,
}


class ChecksumVerifier:
    """Compute and compare artifact checksums.

    Checksums are rendered as ``<algorithm>:<hexdigest>`` so a stored value
    always names the algorithm needed to verify it.
    """

    def __init__(self, algorithm: str = "sha256"):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
        self.algorithm = algorithm

    def compute(self, file_path: Path, algorithm: Optional[str] = None) -> str:
        """Compute checksum of file.

        Args:
            file_path: Path to file
            algorithm: Override the verifier's default algorithm

        Returns:
            Checksum as hex string with '<algorithm>:' prefix
        """
        algorithm = algorithm or self.algorithm
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
        hasher = SUPPORTED_ALGORITHMS[algorithm]()

        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                hasher.update(chunk)

        return f"{algorithm}:{hasher.hexdigest()}"

    def verify(self, file_path: Path, expected_checksum: str) -> bool:
        """Verify file checksum using the algorithm recorded in the expected value."""
        algorithm, _, digest = expected_checksum.partition(":")
        if not digest:
            raise ValueError(f"Malformed checksum: {expected_checksum}")
        return self.compute(file_path, algorithm) == expected_checksum
