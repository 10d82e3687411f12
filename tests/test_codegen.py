"""Short code generator tests."""

from unittest.mock import patch

import pytest

from shortener.codegen import ALPHABET, generate_short_code


def test_alphabet_is_62_url_safe_symbols():
    assert len(ALPHABET) == 62
    assert len(set(ALPHABET)) == 62
    assert ALPHABET.isalnum() and ALPHABET.isascii()


@pytest.mark.parametrize("length", [1, 6, 8, 12])
def test_generate_exact_length_from_alphabet(length: int):
    code = generate_short_code(length)
    assert len(code) == length
    assert set(code) <= set(ALPHABET)


def test_generate_defaults_to_configured_length():
    assert len(generate_short_code()) == 8


def test_generate_rejects_non_positive_length():
    with pytest.raises(AssertionError):
        generate_short_code(0)


def test_generated_codes_do_not_repeat():
    codes = {generate_short_code(8) for _ in range(2000)}
    assert len(codes) == 2000


def test_randomness_failure_propagates():
    with patch("shortener.codegen.generate", side_effect=OSError("no entropy")):
        with pytest.raises(OSError):
            generate_short_code(8)
