"""Tests for random_id.py."""

import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from random_id import ALPHABET, unique_id


class TestUniqueId:
    """Test unique_id."""

    def test_default_shape(self):
        value = unique_id()
        assert len(value) == 6
        assert all(c in ALPHABET for c in value)
        assert value == value.lower()

    def test_custom_length(self):
        assert len(unique_id(length=12)) == 12

    def test_invalid_length(self):
        with pytest.raises(ValueError):
            unique_id(length=0)

    def test_injected_generator_is_deterministic(self):
        """Same seed, same token: callers control randomness."""
        assert unique_id(rng=random.Random(42)) == unique_id(rng=random.Random(42))

    def test_many_ids_unique(self):
        ids = {unique_id() for _ in range(1000)}
        assert len(ids) == 1000
