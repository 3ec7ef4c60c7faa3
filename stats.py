# stats.py
import numpy as np
from scipy import stats

MAX_WEIGHT = np.finfo(float).max


def count_nonzero_beginning(data):
    """Length of ``data`` once its trailing zeros are dropped."""
    nonzero = np.flatnonzero(np.asarray(data, dtype=float))
    return int(nonzero[-1]) + 1 if nonzero.size else 0


def trim_zero_tail(data):
    data = np.asarray(data, dtype=float)
    return data[:count_nonzero_beginning(data)]


def median(data):
    return float(np.median(data)) if len(data) else 0.0


def mad(data):
    """Median absolute deviation."""
    data = np.asarray(data, dtype=float)
    if not data.size:
        return 0.0
    return float(np.median(np.abs(data - np.median(data))))


def iqr(data):
    """
    Interquartile range using the (n + 1) quartile positions, rounded half up.
    """
    ordered = np.sort(np.asarray(data, dtype=float))
    n = len(ordered)
    q1 = int(np.floor(0.25 * (n + 1) + 0.5)) - 1
    q3 = int(np.floor(0.75 * (n + 1) + 0.5)) - 1
    return float(ordered[q3] - ordered[q1])


def tricube_weights(n):
    weights = np.zeros(n)
    top = n - 1
    spread = top
    for i in range(2, n):
        k = (1 - ((top - i) / spread) ** 3) ** 3
        weights[i] = 1 / k if k > 0 else MAX_WEIGHT
    weights[0] = weights[1] = weights[2]
    return weights


def tricube_bisquare_weights(residuals):
    n = len(residuals)
    weights = tricube_weights(n)
    weights2 = np.zeros(n)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        s6 = median(np.abs(residuals)) * 6
        for i in range(2, n):
            k = (1 - (residuals[i] / s6) ** 2) ** 2
            weights2[i] = (1 / k) * weights[i] if k > 0 else MAX_WEIGHT
    weights2[0] = weights2[1] = weights2[2]
    return weights2


def weighted_linear_regression(x, y, weights):
    """
    :return: ``(intercept, slope)``; the weights are only applied when at
             least 40% of them are zero
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    weights = np.asarray(weights, dtype=float)
    if np.count_nonzero(weights <= 0) >= 0.4 * len(weights):
        root = np.sqrt(weights)
        x = root * x
        y = root * y
    if np.all(x == x[0]):
        return float("nan"), float("nan")
    with np.errstate(invalid="ignore", over="ignore"):
        fit = stats.linregress(x, y)
    return float(fit.intercept), float(fit.slope)


def loess_parameter_estimates(y):
    """Local linear trend over x = 1..n with tricube weights."""
    n = len(y)
    x = np.arange(1, n + 1, dtype=float)
    return weighted_linear_regression(x, y, tricube_weights(n))


def robust_loess_parameter_estimates(y):
    """
    Same trend refitted with bisquare weights on the first fit's residuals,
    falling back to the first fit when the refit is undefined.
    """
    y = np.asarray(y, dtype=float)
    n = len(y)
    x = np.arange(1, n + 1, dtype=float)
    intercept, slope = weighted_linear_regression(x, y, tricube_weights(n))
    residuals = y - (intercept + slope * x)
    estimates = weighted_linear_regression(x, y, tricube_bisquare_weights(residuals))
    if np.isnan(estimates[0]) or np.isnan(estimates[1]):
        return intercept, slope
    return estimates


def correlation(xs, ys):
    """Pearson correlation of the common prefix of two series, nan if undefined."""
    n = min(len(xs), len(ys))
    if n < 2:
        return float("nan")
    xs = np.asarray(xs[:n], dtype=float)
    ys = np.asarray(ys[:n], dtype=float)
    if np.std(xs) == 0 or np.std(ys) == 0:
        return float("nan")
    return float(stats.pearsonr(xs, ys)[0])


def r_squared(y, x):
    """R² of an ordinary least squares fit of ``y`` on the columns of ``x`` plus intercept."""
    design = np.column_stack([np.ones(len(y)), x])
    coefficients = np.linalg.lstsq(design, y, rcond=None)[0]
    residuals = y - design @ coefficients
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(1 - np.sum(residuals ** 2) / np.sum((y - np.mean(y)) ** 2))


def correlation_coefficients(data):
    """
    R² of each row of ``data`` regressed on all the other rows.

    :param data: 2-D array, one row per series, one column per observation
    :return: list of R² values, or None when there are not more observations
             than regression parameters
    """
    data = np.asarray(data, dtype=float)
    n, m = data.shape
    if n < 2 or m <= n:
        return None
    coefficients = []
    for i in range(n):
        others = np.delete(data, i, axis=0).T
        coefficients.append(r_squared(data[i], others))
    return coefficients
