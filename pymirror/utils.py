"""Utility functions for pymirror."""

import base64
import hashlib
from pathlib import Path
from typing import Union

from .exceptions import MirrorDigestError

# =============================================================================
# Constants
# =============================================================================

# Read size used when streaming a file through the hash function (1 MB)
DIGEST_CHUNK_SIZE: int = 1024 * 1024

# RFC 4648 base-32 alphabet and its Crockford counterpart
_RFC4648_ALPHABET = b"ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_CROCKFORD_ALPHABET = b"0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_TO_CROCKFORD = bytes.maketrans(_RFC4648_ALPHABET, _CROCKFORD_ALPHABET)


# =============================================================================
# Digest utilities
# =============================================================================


def crockford_b32encode(data: bytes) -> str:
    """Encode bytes as Crockford base-32 without padding.

    Bits are consumed most-significant first in groups of five, exactly as
    in RFC 4648 base-32; only the alphabet differs.

    Args:
        data: Raw bytes to encode

    Returns:
        Upper-case Crockford base-32 string

    Examples:
        >>> crockford_b32encode(b"f")
        'CR'
        >>> crockford_b32encode(b"\\xff")
        'ZW'
    """
    encoded = base64.b32encode(data).rstrip(b"=")
    return encoded.translate(_TO_CROCKFORD).decode("ascii")


def calculate_digest(path: Union[str, Path]) -> str:
    """Compute the content digest of a file.

    The file is streamed through SHA-256 and the full 256-bit digest is
    encoded with :func:`crockford_b32encode`.

    Args:
        path: File to hash

    Returns:
        52-character digest string

    Raises:
        MirrorDigestError: If the file cannot be opened or read
    """
    hasher = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(DIGEST_CHUNK_SIZE), b""):
                hasher.update(chunk)
    except OSError as e:
        raise MirrorDigestError(f"Failed to hash file `{path}`: {e}") from e
    return crockford_b32encode(hasher.digest())


def digests_match(first: str, second: str) -> bool:
    """Compare two digest strings case-insensitively."""
    return first.upper() == second.upper()


# =============================================================================
# Formatting utilities
# =============================================================================


def pluralize(count: int, noun: str) -> str:
    """Format a count with a naively pluralized noun.

    Examples:
        >>> pluralize(1, "file")
        '1 file'
        >>> pluralize(3, "file")
        '3 files'
    """
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"
