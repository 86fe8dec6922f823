from __future__ import annotations

import hashlib

import pytest

from sitepass.app import generator
from sitepass.app.generator import (
    DEFAULT_ALPHABET,
    SYMBOL_SETS,
    EmptyAlphabet,
    class_alphabets,
    covers_all_classes,
    derive,
)
from sitepass.app.hashing import UnsupportedAlgorithm
from sitepass.app.schemas import Profile

LOWER_ALNUM = "abcdefghijklmnopqrstuvwxyz0123456789"


def _profile(**overrides) -> Profile:
    values = {"id": 1, "name": "Default"}
    values.update(overrides)
    return Profile(**values)


def _mapped(algorithm: str, text: str, alphabet: str) -> str:
    raw = hashlib.new(algorithm, text.encode("utf-8")).digest()
    return "".join(alphabet[byte % len(alphabet)] for byte in raw)


def test_concrete_sha256_scenario() -> None:
    profile = _profile(hash_algorithm="sha256", alphabet=LOWER_ALNUM, length=8, custom=True)

    password = derive(profile, "example.com", "correct horse")

    raw = hashlib.sha256(b"correct horseexample.com").digest()
    assert password == "".join(LOWER_ALNUM[byte % 36] for byte in raw[:8])
    assert len(password) == 8
    assert set(password) <= set(LOWER_ALNUM)


def test_derive_is_deterministic() -> None:
    profile = _profile(length=20)
    assert derive(profile, "example.com", "hunter2") == derive(profile, "example.com", "hunter2")


def test_derive_is_sensitive_to_domain_and_master_password() -> None:
    profile = _profile(length=16)
    baseline = derive(profile, "example.com", "hunter2")
    assert derive(profile, "example.org", "hunter2") != baseline
    assert derive(profile, "example.com", "hunter3") != baseline


def test_long_password_needs_two_digests(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    real_digest_to_alphabet = generator.digest_to_alphabet

    def counting(algorithm: str, text: str, alphabet: str) -> str:
        calls.append(text)
        return real_digest_to_alphabet(algorithm, text, alphabet)

    monkeypatch.setattr(generator, "digest_to_alphabet", counting)
    profile = _profile(hash_algorithm="sha256", alphabet=LOWER_ALNUM, length=40, custom=True)

    password = derive(profile, "example.com", "pw")

    assert calls == ["pwexample.com", "pw\n1example.com"]
    expected = (
        _mapped("sha256", "pwexample.com", LOWER_ALNUM)
        + _mapped("sha256", "pw\n1example.com", LOWER_ALNUM)
    )[:40]
    assert password == expected


@pytest.mark.parametrize(("algorithm", "length"), [("md5", 50), ("sha1", 7), ("sha256", 100)])
def test_output_length_matches_profile(algorithm: str, length: int) -> None:
    profile = _profile(hash_algorithm=algorithm, length=length)
    assert len(derive(profile, "example.com", "pw")) == length


def test_output_stays_inside_alphabet_without_mixing() -> None:
    profile = _profile(alphabet="XY!", custom=True, length=64, mix_classes=False)
    assert set(derive(profile, "example.com", "pw")) <= set("XY!")


@pytest.mark.parametrize("alphabet", ["a", "", "aaaa"])
def test_short_alphabet_fails(alphabet: str) -> None:
    profile = _profile(alphabet=alphabet, custom=True)
    with pytest.raises(EmptyAlphabet):
        derive(profile, "example.com", "pw")


def test_unknown_algorithm_fails() -> None:
    profile = _profile(hash_algorithm="sha3")
    with pytest.raises(UnsupportedAlgorithm):
        derive(profile, "example.com", "pw")


def test_mix_keeps_password_when_classes_are_covered() -> None:
    profile = _profile(
        alphabet="aA",
        custom=True,
        length=32,
        char_digits=False,
        char_symbols=False,
        mix_classes=True,
    )
    plain = derive(profile.model_copy(update={"mix_classes": False}), "example.com", "pw")
    assert covers_all_classes(plain, class_alphabets(digits=False, symbols=False))
    assert derive(profile, "example.com", "pw") == plain


def test_mix_repairs_from_raw_digest_over_enabled_classes() -> None:
    profile = _profile(
        hash_algorithm="sha256",
        alphabet="ab",
        custom=True,
        length=8,
        char_upper=True,
        char_lower=True,
        char_digits=False,
        char_symbols=False,
        mix_classes=True,
    )

    password = derive(profile, "example.com", "correct horse")

    classes = SYMBOL_SETS["upper"] + SYMBOL_SETS["lower"]
    raw = hashlib.sha256(b"correct horseexample.com").digest()
    assert password == "".join(classes[byte % 52] for byte in raw[:8])
    assert set(password) <= set(classes)


def test_mix_repair_extends_with_counter_suffix() -> None:
    profile = _profile(
        hash_algorithm="md5",
        alphabet="ab",
        custom=True,
        length=20,
        char_upper=False,
        char_lower=False,
        char_digits=True,
        char_symbols=False,
        mix_classes=True,
    )

    password = derive(profile, "example.com", "pw")

    digits = SYMBOL_SETS["digits"]
    expected = (_mapped("md5", "pwexample.com", digits) + _mapped("md5", "pw\n1example.com", digits))[:20]
    assert password == expected


def test_mix_without_enabled_classes_returns_buffer() -> None:
    profile = _profile(
        alphabet="ab",
        custom=True,
        length=10,
        char_upper=False,
        char_lower=False,
        char_digits=False,
        char_symbols=False,
        mix_classes=True,
    )
    assert derive(profile, "example.com", "pw") == derive(
        profile.model_copy(update={"mix_classes": False}), "example.com", "pw"
    )


def test_covers_all_classes() -> None:
    sets = class_alphabets()
    assert covers_all_classes("aB3!", sets)
    assert not covers_all_classes("aB3", sets)
    assert covers_all_classes("", [])
    assert covers_all_classes("a", [SYMBOL_SETS["lower"], "xyza"])


def test_class_alphabets_keep_fixed_order() -> None:
    assert class_alphabets(upper=False, symbols=False) == [SYMBOL_SETS["lower"], SYMBOL_SETS["digits"]]
    assert "".join(class_alphabets()) == DEFAULT_ALPHABET
    assert len(DEFAULT_ALPHABET) == 94
