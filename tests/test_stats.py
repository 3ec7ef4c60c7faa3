import numpy as np
import pytest

from stats import (correlation, correlation_coefficients, count_nonzero_beginning, iqr,
                   loess_parameter_estimates, mad, median, robust_loess_parameter_estimates,
                   tricube_weights, trim_zero_tail)

DATA1 = [105, 109, 107, 112, 102, 118, 115, 104, 110, 116, 108]
DATA2 = [2, 4, 7, -20, 22, -1, 0, -1, 7, 15, 8, 4, -4, 11, 11, 12, 3, 12, 18, 1]
DATA3 = [1, 1, 2, 2, 4, 6, 9]
DATA4 = [1, 1, 2, 2, 4, 6, 9, 0, 10, 0, 0, 0, 0, 0]


def test_mad():
    assert mad(DATA3) == 1


def test_iqr():
    assert iqr(DATA1) == 10
    assert iqr(DATA2) == 12


def test_count_nonzero_beginning():
    assert count_nonzero_beginning(DATA4) == 9
    assert count_nonzero_beginning([0, 0, 0]) == 0
    assert count_nonzero_beginning([]) == 0


def test_trim_zero_tail():
    assert list(trim_zero_tail(DATA4)) == DATA4[:9]


def test_median_of_empty_is_zero():
    assert median([]) == 0.0
    assert median([3, 1, 2]) == 2


def test_tricube_weights():
    weights = tricube_weights(10)
    assert len(weights) == 10
    assert weights[0] == weights[1] == weights[2]
    assert np.all(weights > 0)
    # the newest sample gets weight 1, older ones are heavier
    assert weights[-1] == pytest.approx(1.0)
    assert weights[3] > weights[-1]


def test_loess_recovers_a_line():
    y = [0.45 + 0.05 * x for x in range(1, 11)]
    intercept, slope = loess_parameter_estimates(y)
    assert intercept == pytest.approx(0.45)
    assert slope == pytest.approx(0.05)


def test_robust_loess_on_exact_line_matches_plain_fit():
    y = [0.2 + 0.01 * x for x in range(1, 11)]
    assert robust_loess_parameter_estimates(y) == pytest.approx(loess_parameter_estimates(y))


def test_correlation():
    assert correlation([1, 2, 3, 4], [2, 4, 6, 8]) == pytest.approx(1.0)
    assert correlation([1, 2, 3, 4], [8, 6, 4, 2, 0]) == pytest.approx(-1.0)
    assert np.isnan(correlation([1, 1, 1], [1, 2, 3]))
    assert np.isnan(correlation([1], [2]))


def test_correlation_coefficients():
    r1 = np.array([1, 2, 3, 4, 5, 7], dtype=float)
    r2 = np.array([2, 1, 4, 3, 6, 5], dtype=float)
    coefficients = correlation_coefficients([r1 + r2, r1, r2])
    assert coefficients[0] == pytest.approx(1.0)
    assert correlation_coefficients([[1, 2], [3, 4]]) is None
