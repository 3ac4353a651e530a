"""Tests for msir_metapop.rng — seeded replicate streams."""

import numpy as np
import pytest

from msir_metapop.rng import make_rng, replicate_rngs, spawn_seeds


class TestSpawnSeeds:
    def test_count(self):
        assert len(spawn_seeds(42, 5)) == 5
        assert spawn_seeds(42, 0) == []

    def test_negative_seed(self):
        with pytest.raises(ValueError):
            spawn_seeds(-1, 3)

    def test_negative_count(self):
        with pytest.raises(ValueError):
            spawn_seeds(42, -1)


class TestReplicateRngs:
    def test_streams_are_independent(self):
        """Different replicates produce different sequences."""
        rngs = replicate_rngs(42, 4)
        vals = [rng.random() for rng in rngs]
        assert len(set(vals)) == len(vals), "replicate streams produced duplicate values"

    def test_reproducibility(self):
        for r1, r2 in zip(replicate_rngs(42, 3), replicate_rngs(42, 3)):
            np.testing.assert_array_equal(r1.random(100), r2.random(100))

    def test_prefix_stable(self):
        """Growing the replicate count leaves earlier streams unchanged."""
        few = replicate_rngs(7, 2)
        many = replicate_rngs(7, 10)
        for r1, r2 in zip(few, many):
            np.testing.assert_array_equal(r1.random(10), r2.random(10))

    def test_different_seeds_differ(self):
        a = replicate_rngs(42, 1)[0].random(10)
        b = replicate_rngs(43, 1)[0].random(10)
        assert not np.array_equal(a, b)


class TestMakeRng:
    def test_int_seed(self):
        np.testing.assert_array_equal(make_rng(5).random(5), make_rng(5).random(5))

    def test_seed_sequence(self):
        ss = np.random.SeedSequence(11)
        np.testing.assert_array_equal(make_rng(ss).random(5),
                                      make_rng(np.random.SeedSequence(11)).random(5))

    def test_generator_passthrough(self):
        rng = np.random.default_rng(3)
        assert make_rng(rng) is rng

    def test_pcg64(self):
        assert isinstance(make_rng(1).bit_generator, np.random.PCG64)
