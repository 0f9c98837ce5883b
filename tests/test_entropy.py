import os

import pytest

from Scanners.entropy import byte_counts, file_entropy, shannon_entropy


def test_empty_data_has_zero_entropy():
    assert shannon_entropy(b"") == 0.0


def test_single_repeated_byte_has_zero_entropy():
    assert shannon_entropy(b"A" * 1000) == 0.0


def test_two_equally_likely_values_give_one_bit():
    assert shannon_entropy(b"ab" * 500) == pytest.approx(1.0)


def test_all_byte_values_give_maximum_entropy():
    assert shannon_entropy(bytes(range(256)) * 4) == pytest.approx(8.0)


def test_random_data_stays_within_bounds():
    value = shannon_entropy(os.urandom(4096))
    assert 7.0 < value <= 8.0


def test_byte_counts_covers_all_values():
    counts = byte_counts(b"\x00\x00\xff")
    assert counts.shape == (256,)
    assert counts[0] == 2
    assert counts[255] == 1


def test_file_entropy_reads_file(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"ab" * 100)
    assert file_entropy(str(path)) == pytest.approx(1.0)


def test_file_entropy_missing_file_is_zero(tmp_path):
    assert file_entropy(str(tmp_path / "missing.bin")) == 0.0
