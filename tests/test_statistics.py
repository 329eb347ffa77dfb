"""Unit tests for severity statistics: pure functions, no I/O."""

import math

from incident_insights.analytics.statistics import maximum, mean, median, minimum, stddev


class TestEmptySeries:
    def test_all_undefined(self) -> None:
        assert mean([]) is None
        assert median([]) is None
        assert maximum([]) is None
        assert minimum([]) is None
        assert stddev([]) is None


class TestMean:
    def test_simple(self) -> None:
        assert mean([8, 9, 8, 3]) == 7.0

    def test_single_value(self) -> None:
        assert mean([4]) == 4.0


class TestMedian:
    def test_odd_count(self) -> None:
        assert median([9, 1, 5]) == 5.0

    def test_even_count_averages_middle_pair(self) -> None:
        assert median([1, 2, 3, 4]) == 2.5

    def test_unsorted_input(self) -> None:
        assert median([10, 1, 7, 3]) == 5.0


class TestExtremes:
    def test_max_and_min(self) -> None:
        values = [3, 10, 1, 7]
        assert maximum(values) == 10
        assert minimum(values) == 1


class TestStddev:
    def test_population_stddev(self) -> None:
        assert stddev([2, 4, 4, 4, 5, 5, 7, 9]) == 2.0

    def test_constant_series_is_zero(self) -> None:
        assert stddev([5, 5, 5]) == 0.0

    def test_two_values(self) -> None:
        result = stddev([1, 3])
        assert result is not None
        assert math.isclose(result, 1.0)
