import numpy as np
from scipy.stats import norm


def influence_curve_variance(ic):
    """Mean of the squared influence curve, the estimated asymptotic variance of psi"""
    ic = np.asarray(ic, dtype=float)
    return np.mean(ic ** 2)


def wald_confidence_interval(psi, ic, alpha=0.05):
    """Standard error and Wald-type confidence interval from the influence curve.

    Parameters
    ----------
    psi : float
        Point estimate
    ic : array-like
        Influence curve of the estimator, one value per observation
    alpha : float, optional
        Alpha for the confidence interval level. Default is 0.05, returning the 95% CL

    Returns
    -------
    standard error, (lower, upper)
    """
    if not 0 < alpha < 1:
        raise ValueError("alpha must be between (0, 1)")
    ic = np.asarray(ic, dtype=float)
    zalpha = norm.ppf(1 - alpha / 2, loc=0, scale=1)
    se = np.sqrt(influence_curve_variance(ic)) / np.sqrt(ic.shape[0])
    return se, (psi - zalpha * se, psi + zalpha * se)
