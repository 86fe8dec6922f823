"""Digest helpers used by the password generator."""
from __future__ import annotations

import hashlib
from typing import Any, Final

SUPPORTED_ALGORITHMS: Final = ("md5", "sha1", "sha256")


class UnsupportedAlgorithm(ValueError):
    """Raised when a profile names a hash algorithm we do not implement."""

    def __init__(self, algorithm: str) -> None:
        super().__init__(f"不支持的哈希算法: {algorithm}")
        self.algorithm = algorithm


def _new_hash(algorithm: str) -> Any:
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise UnsupportedAlgorithm(algorithm)
    return hashlib.new(algorithm)


def digest_size(algorithm: str) -> int:
    """Number of bytes produced by ``algorithm``."""

    return _new_hash(algorithm).digest_size


def digest(algorithm: str, data: bytes) -> bytes:
    """Return the raw digest of ``data``."""

    hasher = _new_hash(algorithm)
    hasher.update(data)
    return hasher.digest()


def bytes_to_alphabet(raw: bytes, alphabet: str) -> str:
    """Map every byte onto ``alphabet`` by ``byte % len(alphabet)``.

    Byte order is preserved and one character is produced per byte. Sizes
    that do not divide 256 favour the leading characters slightly.
    """

    if not alphabet:
        raise ValueError("字符表不能为空")
    size = len(alphabet)
    return "".join(alphabet[byte % size] for byte in raw)


def digest_to_alphabet(algorithm: str, text: str, alphabet: str) -> str:
    """Hash the UTF-8 encoding of ``text`` and spell the digest in ``alphabet``."""

    return bytes_to_alphabet(digest(algorithm, text.encode("utf-8")), alphabet)
