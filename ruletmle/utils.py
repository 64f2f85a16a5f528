import warnings
import numpy as np
from scipy.stats import logistic


def probability_to_odds(prob):
    """Converts given probability (proportion) to odds"""
    return prob / (1 - prob)


def logit(prob):
    """Log-odds of the given probability"""
    return np.log(probability_to_odds(prob))


def inverse_logit(logodds):
    """Probability from the given log-odds"""
    return logistic.cdf(logodds)


def bounding(v, bounds):
    """Truncate values into the open unit interval before they are put on the logit scale. A single float gives
    symmetric bounds, [bounds, 1 - bounds]. Otherwise the first two values of the collection are used as the lower
    and upper bound.

    Parameters
    ----------
    v : array-like
        Values to truncate. Input is not modified
    bounds : float, list, tuple
        Symmetric bound or (lower, upper) pair. Must satisfy 0 < lower < upper < 1

    Returns
    -------
    numpy.ndarray of truncated values
    """
    lower, upper = check_bounds(bounds)
    v = np.array(v, dtype=float)
    v = np.where(v < lower, lower, v)
    v = np.where(v > upper, upper, v)
    return v


def check_bounds(bounds):
    """Validate and unpack a bound specification into (lower, upper)"""
    if isinstance(bounds, float):  # Symmetric bounding
        if not 0 < bounds < 0.5:
            raise ValueError('Symmetric bound value must be between (0, 0.5)')
        return bounds, 1 - bounds
    elif isinstance(bounds, (str, int, np.integer)):  # Catching bad scalar inputs
        raise ValueError('Bounds must either be a float between (0, 0.5), or a collection of floats between (0, 1)')
    else:  # Asymmetric bounds
        if len(bounds) < 2:
            raise ValueError('Bounds must contain a lower and an upper value')
        if len(bounds) > 2:
            warnings.warn('It looks like your specified bounds is more than two floats. Only the first two '
                          'specified bounds are used by the bound statement. So only ' +
                          str(bounds[0:2]) + ' will be used', UserWarning)
        if type(bounds[0]) is str or type(bounds[1]) is str:
            raise ValueError('Bounds must be floats between (0, 1)')
        if bounds[0] >= bounds[1]:
            raise ValueError('Bound thresholds must be listed in ascending order')
        if bounds[0] <= 0 or bounds[1] >= 1:
            raise ValueError('Both bound values must be between (0, 1)')
        return float(bounds[0]), float(bounds[1])


def check_propensity(prob, label='propensity'):
    """Fails fast when any probability of exposure is missing or not strictly within (0, 1)"""
    prob = np.asarray(prob, dtype=float)
    if np.any(np.isnan(prob)):
        raise ValueError("invalid " + label + ": missing values are not allowed")
    if np.any(prob <= 0) or np.any(prob >= 1):
        raise ValueError("invalid " + label + ": all values must be strictly between 0 and 1. "
                         + str(np.sum((prob <= 0) | (prob >= 1))) + " value(s) were outside of (0, 1)")
    return prob


def tmle_unit_bounds(y, mini, maxi, bound=0.0):
    # bounding for continuous outcomes
    v = (np.asarray(y, dtype=float) - mini) / (maxi - mini)
    v = np.where(np.less(v, bound), bound, v)
    v = np.where(np.greater(v, 1 - bound), 1 - bound, v)
    return v


def tmle_unit_unbound(ystar, mini, maxi):
    # unbounding of bounded continuous outcomes
    return np.asarray(ystar) * (maxi - mini) + mini
