"""Streaming hash verification for artifact integrity checking."""

import hashlib
from pathlib import Path
from typing import Iterable, Mapping, Optional
import logging

from ddiclient.errors import ConfigurationError, HashMismatchError

SUPPORTED_ALGORITHMS = ("md5", "sha1", "sha256")


def validate_algorithms(algorithms: Iterable[str]) -> tuple[str, ...]:
    """Normalize and validate a set of hash algorithm names.

    Args:
        algorithms: Algorithm names (case-insensitive)

    Returns:
        Tuple of lower-case names, duplicates removed, order preserved

    Raises:
        ConfigurationError: If a name is not one of md5/sha1/sha256
    """
    result: list[str] = []
    for name in algorithms:
        name = name.strip().lower()
        if name not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported hash algorithm: {name} "
                f"(expected one of {', '.join(SUPPORTED_ALGORITHMS)})"
            )
        if name not in result:
            result.append(name)
    return tuple(result)


class HashVerifier:
    """Incremental digest over a byte stream for a configured set of algorithms.

    Chunks may have any size; the resulting digests only depend on the
    concatenated bytes.
    """

    def __init__(self, algorithms: Iterable[str] = SUPPORTED_ALGORITHMS):
        self.logger = logging.getLogger("ddiclient.verification")
        self.algorithms = validate_algorithms(algorithms)
        self._hashers = {name: hashlib.new(name) for name in self.algorithms}
        self.bytes_hashed = 0

    def update(self, chunk: bytes) -> None:
        """Feed the next chunk of bytes to every running digest."""
        for hasher in self._hashers.values():
            hasher.update(chunk)
        self.bytes_hashed += len(chunk)

    def hexdigests(self) -> dict[str, str]:
        """Return the current algorithm -> lower-case hex digest mapping."""
        return {name: hasher.hexdigest() for name, hasher in self._hashers.items()}

    def verify(self, expected: Mapping[str, Optional[str]], filename: str = "") -> dict[str, str]:
        """Compare computed digests against the declared ones.

        Only algorithms that are both configured and declared are compared.

        Args:
            expected: Declared algorithm -> hex digest (missing or None entries
                are skipped)
            filename: Artifact name used in error messages

        Returns:
            The computed digests

        Raises:
            HashMismatchError: On the first algorithm whose digest differs
        """
        computed = self.hexdigests()
        for name, actual in computed.items():
            declared = expected.get(name)
            if not declared:
                continue
            if declared.lower() != actual:
                self.logger.error(
                    f"{name} mismatch for {filename or 'stream'}: "
                    f"expected {declared.lower()}, got {actual}"
                )
                raise HashMismatchError(name, declared.lower(), actual, filename)
        self.logger.debug(f"Hash verification passed for {filename or 'stream'}")
        return computed


def compute_file_hashes(
    file_path: Path,
    algorithms: Iterable[str] = SUPPORTED_ALGORITHMS,
    chunk_size: int = 8192,
) -> dict[str, str]:
    """Compute digests of a file already on disk.

    Args:
        file_path: Path to file to hash
        algorithms: Algorithms to compute
        chunk_size: Read buffer size (default 8KB for memory efficiency)

    Returns:
        Algorithm -> hex digest mapping

    Raises:
        FileNotFoundError: If file doesn't exist
    """
    verifier = HashVerifier(algorithms)
    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            verifier.update(chunk)
    return verifier.hexdigests()
