"""
Test suite for the deterministic random helpers.

The mulberry32 reference values below were produced by the browser
implementation; every client animates the spinner from the same seed, so
these must match exactly.

Run with: pytest test_rng.py -v
"""

import pytest

from rng import imul, mulberry32, random_seed, shuffle_in_place


class TestImul:

    def test_small_values(self):
        assert imul(3, 7) == 21

    def test_wraps_to_32_bits(self):
        assert imul(0xFFFFFFFF, 0xFFFFFFFF) == 1
        assert imul(0x10000, 0x10000) == 0

    def test_result_is_unsigned(self):
        assert imul(-1, 2) == 0xFFFFFFFE


class TestMulberry32:

    @pytest.mark.parametrize("seed,expected", [
        (0, [0.26642920868471265, 0.0003297457005828619, 0.2232720274478197]),
        (1, [0.6270739405881613, 0.002735721180215478, 0.5274470399599522]),
        (123456789, [0.2577907438389957, 0.9707721115555614, 0.7853280142880976]),
        (2147483647, [0.4290980885270983, 0.12713524978607893, 0.3852774982806295]),
    ])
    def test_matches_browser_sequence(self, seed, expected):
        rng = mulberry32(seed)
        assert [rng(), rng(), rng()] == expected

    def test_same_seed_same_sequence(self):
        a = mulberry32(42)
        b = mulberry32(42)
        assert [a() for _ in range(20)] == [b() for _ in range(20)]

    def test_outputs_in_unit_interval(self):
        rng = mulberry32(99)
        for _ in range(1000):
            value = rng()
            assert 0 <= value < 1

    def test_only_low_32_bits_of_seed_used(self):
        assert mulberry32(5)() == mulberry32(5 + 2**32)()


class TestShuffle:

    def test_returns_same_list(self):
        items = [1, 2, 3]
        assert shuffle_in_place(items, mulberry32(1)) is items

    def test_is_permutation(self):
        items = list(range(36))
        shuffle_in_place(items, mulberry32(7))
        assert sorted(items) == list(range(36))

    def test_deterministic_with_seeded_rng(self):
        a = shuffle_in_place(list(range(10)), mulberry32(3))
        b = shuffle_in_place(list(range(10)), mulberry32(3))
        assert a == b

    def test_zero_rng_rotates_first_element_to_end(self):
        # rng() == 0 always swaps index i with 0.
        assert shuffle_in_place([0, 1, 2, 3], lambda: 0.0) == [1, 2, 3, 0]

    def test_empty_and_single(self):
        assert shuffle_in_place([]) == []
        assert shuffle_in_place([5]) == [5]


class TestRandomSeed:

    def test_31_bit_range(self):
        assert random_seed(lambda: 0.0) == 0
        assert random_seed(lambda: 0.999999999) < 2**31

    def test_scales_rng_output(self):
        assert random_seed(lambda: 0.5) == 2**30
