"""Tests for the 2AFC response helpers."""

from __future__ import annotations

import random

import pytest

from hpen_app.jnd.response import TrialRecord, new_trial, presentation_order, shuffle, staircase_response


class TestStaircaseResponse:
    """Tests for remapping participant judgments."""

    @pytest.mark.parametrize(
        ("detected", "offset", "expected"),
        [
            (True, 0.01, True),
            (True, -0.01, False),
            (True, 0.0, False),
            (False, -0.01, True),
            (False, 0.0, True),
            (False, 0.01, False),
        ],
    )
    def test_transform_table(self, detected: bool, offset: float, expected: bool) -> None:
        assert staircase_response(detected, offset) is expected


class TestTrialRecord:
    """Tests for TrialRecord presentation order."""

    def test_reference_first(self) -> None:
        record = TrialRecord(test_stimulus=0.7, reference_stimulus=0.5, reference_first=True, offset=0.2)
        assert record.first_stimulus == 0.5
        assert record.second_stimulus == 0.7

    def test_test_first(self) -> None:
        record = TrialRecord(test_stimulus=0.7, reference_stimulus=0.5, reference_first=False, offset=0.2)
        assert record.first_stimulus == 0.7
        assert record.second_stimulus == 0.5

    def test_new_trial_adds_offset_to_reference(self) -> None:
        record = new_trial(-0.1, 0.5, random.Random(1))
        assert record.test_stimulus == pytest.approx(0.4)
        assert record.reference_stimulus == 0.5
        assert record.offset == -0.1

    def test_new_trial_order_is_random(self) -> None:
        """Both orders should show up over many trials."""
        rng = random.Random(42)
        orders = {new_trial(0.1, 0.5, rng).reference_first for _ in range(100)}
        assert orders == {True, False}


class TestShuffle:
    """Tests for the Fisher-Yates shuffle and session ordering."""

    @pytest.mark.parametrize("n", [0, 1, 2, 7, 50])
    def test_shuffle_is_permutation(self, n: int) -> None:
        items = list(range(n))
        result = shuffle(items, random.Random(n))
        assert result is items
        assert sorted(result) == list(range(n))

    def test_shuffle_reproducible_with_seed(self) -> None:
        assert shuffle(list(range(10)), random.Random(3)) == shuffle(list(range(10)), random.Random(3))

    def test_presentation_order_sequential(self) -> None:
        assert presentation_order(4, randomize=False) == [0, 1, 2, 3]

    def test_presentation_order_randomized_is_permutation(self) -> None:
        order = presentation_order(6, randomize=True, rng=random.Random(0))
        assert sorted(order) == list(range(6))

    def test_presentation_order_empty(self) -> None:
        assert presentation_order(0) == []
