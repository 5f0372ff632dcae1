"""
Verifies a cached bundle against its companion SHA-256 digest file.
"""

import asyncio
import hashlib
import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from bundle_cache.exceptions import BundleCacheError, FilesystemError, IntegrityError

log = logging.getLogger(__name__)

_HASH_CHUNK_SIZE = 1048576  # 1 MB


class VerificationStatus(Enum):
    """Outcome of checking a bundle against its digest."""

    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class VerificationResult:
    """
    Tagged result of a verification run.

    An INVALID result carries the error that explains it, so callers can
    decide whether to recover (refetch) or surface it.
    """

    status: VerificationStatus
    error: BundleCacheError | None = None

    @classmethod
    def valid(cls) -> "VerificationResult":
        return cls(VerificationStatus.VALID)

    @classmethod
    def invalid(cls, error: BundleCacheError) -> "VerificationResult":
        return cls(VerificationStatus.INVALID, error)

    @property
    def is_valid(self) -> bool:
        return self.status is VerificationStatus.VALID

    @property
    def reason(self) -> str:
        return str(self.error) if self.error else ""

    def raise_for_status(self) -> None:
        """Raises the carried error if the result is INVALID."""
        if self.error is not None:
            raise self.error


def parse_digest(text: str) -> bytes:
    """
    Extracts the expected digest from the contents of a digest file.

    Only the first whitespace-separated token is used; anything after it
    (typically the echoed filename) is ignored.

    Raises:
        IntegrityError: If there is no token or it is not valid hex.
    """
    parts = text.split()
    if not parts:
        raise IntegrityError("digest file is empty")
    try:
        return bytes.fromhex(parts[0])
    except ValueError as e:
        raise IntegrityError(f"error decoding digest {parts[0][:80]!r}: {e}") from e


def compute_sha256(path: Path, chunk_size: int = _HASH_CHUNK_SIZE) -> bytes:
    """Streams a file through SHA-256 and returns the raw digest."""
    h256 = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            h256.update(chunk)
    return h256.digest()


def digests_match(computed: bytes, expected: bytes) -> bool:
    """Full-length comparison; a prefix of the real digest never matches."""
    return len(computed) == len(expected) and hmac.compare_digest(computed, expected)


def check_bundle(digest_path: Path, bundle_path: Path) -> VerificationResult:
    """Blocking implementation of :func:`verify_bundle`."""
    try:
        with open(digest_path, encoding="utf-8") as f:
            digest_text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        return VerificationResult.invalid(
            IntegrityError(f"error reading {digest_path}: {e}")
        )

    try:
        expected = parse_digest(digest_text)
    except IntegrityError as e:
        return VerificationResult.invalid(
            IntegrityError(f"error decoding digest from {digest_path}: {e}")
        )

    try:
        computed = compute_sha256(bundle_path)
    except OSError as e:
        return VerificationResult.invalid(
            FilesystemError(f"error computing digest for {bundle_path}: {e}")
        )

    if not digests_match(computed, expected):
        log.debug(
            f"Digest mismatch for {bundle_path.name}: expected {expected.hex()}, "
            f"got {computed.hex()}"
        )
        return VerificationResult.invalid(IntegrityError("hash mismatch"))

    return VerificationResult.valid()


async def verify_bundle(digest_path: Path, bundle_path: Path) -> VerificationResult:
    """
    Checks that the bundle's SHA-256 equals the digest recorded next to it.

    Hashing runs in a worker thread so large bundles do not block the event loop.

    Args:
        digest_path: Path to the ``.sha256`` file.
        bundle_path: Path to the bundle file.

    Returns:
        VALID, or INVALID carrying an IntegrityError (unreadable or malformed
        digest, mismatch) or a FilesystemError (unreadable bundle).
    """
    return await asyncio.to_thread(check_bundle, digest_path, bundle_path)
