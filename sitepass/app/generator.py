"""Deterministic per-site password derivation."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final, Sequence

from .hashing import bytes_to_alphabet, digest, digest_to_alphabet

if TYPE_CHECKING:
    from .schemas import Profile

logger = logging.getLogger("sitepass.generator")

CHARACTER_CLASSES: Final = ("upper", "lower", "digits", "symbols")

SYMBOL_SETS: Final = {
    "upper": "ABCDEFGHIJKLMNOPQRSTUVWXYZ",
    "lower": "abcdefghijklmnopqrstuvwxyz",
    "digits": "0123456789",
    "symbols": "`~!@#$%^&*()_-+={}|[]\\:\";'<>?,./",
}

DEFAULT_ALPHABET: Final = "".join(SYMBOL_SETS[name] for name in CHARACTER_CLASSES)


class EmptyAlphabet(ValueError):
    """Raised when a profile leaves fewer than two characters to pick from."""


def class_alphabets(
    *, upper: bool = True, lower: bool = True, digits: bool = True, symbols: bool = True
) -> list[str]:
    """Return the canonical sets of the enabled classes in class order."""

    enabled = {"upper": upper, "lower": lower, "digits": digits, "symbols": symbols}
    return [SYMBOL_SETS[name] for name in CHARACTER_CLASSES if enabled[name]]


def covers_all_classes(password: str, sets: Sequence[str]) -> bool:
    """True when ``password`` holds at least one character of every set."""

    return all(any(char in charset for char in password) for charset in sets)


def _hash_input(master_password: str, domain: str, count: int) -> str:
    if count:
        return f"{master_password}\n{count}{domain}"
    return master_password + domain


def stretch(
    algorithm: str, master_password: str, domain: str, alphabet: str, length: int
) -> str:
    """Concatenate alphabet-mapped digests until ``length`` characters exist."""

    buffer = ""
    count = 0
    while len(buffer) < length:
        buffer += digest_to_alphabet(
            algorithm, _hash_input(master_password, domain, count), alphabet
        )
        count += 1
    return buffer[:length]


def _repair(
    algorithm: str, master_password: str, domain: str, sets: Sequence[str], length: int
) -> str:
    # Best effort: the result only draws from enabled classes, coverage is not re-checked.
    alphabet = "".join(sets)
    raw = digest(algorithm, (master_password + domain).encode("utf-8"))
    repaired = bytes_to_alphabet(raw, alphabet)
    count = 1
    while len(repaired) < length:
        repaired += digest_to_alphabet(
            algorithm, _hash_input(master_password, domain, count), alphabet
        )
        count += 1
    return repaired[:length]


def derive(profile: "Profile", domain: str, master_password: str) -> str:
    """Derive the password for ``domain`` under ``profile``.

    Raises :class:`EmptyAlphabet` for alphabets with fewer than two distinct
    characters and :class:`~sitepass.app.hashing.UnsupportedAlgorithm` for
    unknown hash names.
    """

    alphabet = profile.alphabet
    if len(set(alphabet)) < 2:
        raise EmptyAlphabet("字符表至少需要两个不同的字符")

    algorithm = profile.hash_algorithm
    password = stretch(algorithm, master_password, domain, alphabet, profile.length)
    if not profile.mix_classes:
        return password

    sets = class_alphabets(
        upper=profile.char_upper,
        lower=profile.char_lower,
        digits=profile.char_digits,
        symbols=profile.char_symbols,
    )
    if covers_all_classes(password, sets):
        return password

    logger.debug(
        "profile %s: character classes not covered, repairing with %s",
        profile.id,
        algorithm,
    )
    return _repair(algorithm, master_password, domain, sets, profile.length)
