import warnings
from collections import namedtuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import ConvergenceWarning, PerfectSeparationError, PerfectSeparationWarning

from ruletmle.utils import logit, inverse_logit, bounding, check_bounds, check_propensity


TargetingResult = namedtuple('TargetingResult', ['data', 'psi', 'steps', 'influence_curve', 'ed', 'ed2',
                                                 'converged', 'history', 'diagnostics'])
TargetingResult.__doc__ = """Output of the iterative targeting procedure. `data` holds the final A, Y, pA, Q, and H
columns, `ed` and `ed2` are the mean and mean of squares of the final influence curve, and `history` has one row per
iteration (epsilon, psi, and mean of the influence curve after that iteration)."""


class FluctuationWarning(UserWarning):
    """Numerical trouble reported while fitting the logistic fluctuation model"""


_FIT_WARNINGS = (ConvergenceWarning, PerfectSeparationWarning, RuntimeWarning)


def rule_vector(rule, n):
    """Broadcasts the treatment rule to one value per unit. A scalar rule is applied to everyone, otherwise the rule
    must already be of length n. All values must be 0 or 1.
    """
    rule = np.asarray(rule)
    if rule.ndim == 0:
        rule = np.repeat(rule, n)
    elif rule.ndim != 1 or rule.shape[0] != n:
        raise ValueError("The rule must either be a single value or have one value per observation (" +
                         str(n) + ")")
    if not np.isin(rule, [0, 1]).all():
        raise ValueError("The rule can only assign exposure values of 0 or 1")
    return rule.astype(int)


def rule_data(obs_a, obs_y, pa1, q0w, q1w, rule):
    """Aligns the observed data and the nuisance estimates with the treatment rule.

    Parameters
    ----------
    obs_a : array-like
        Observed exposure, A
    obs_y : array-like
        Observed outcome, Y. Must already be on the unit scale
    pa1 : array-like
        Estimate of g, Pr(A=1|W)
    q0w : array-like
        Estimate of Q(0,W), E(Y|A=0,W)
    q1w : array-like
        Estimate of Q(1,W), E(Y|A=1,W)
    rule : int, array-like
        Exposure assigned by the rule, either for everyone or per observation

    Returns
    -------
    DataFrame with columns `A` (observed exposure follows the rule), `Y`, `pA` (probability of the rule-assigned
    exposure), and `Q` (outcome estimate under the rule-assigned exposure)
    """
    obs_a = np.asarray(obs_a, dtype=float)
    n = obs_a.shape[0]
    obs_y, q0w, q1w = (np.asarray(v, dtype=float) for v in (obs_y, q0w, q1w))
    pa1 = np.asarray(pa1, dtype=float)
    for label, v in zip(['outcome', 'propensity', 'Q(0,W)', 'Q(1,W)'], [obs_y, pa1, q0w, q1w]):
        if v.shape != (n, ):
            raise ValueError("The " + label + " values must be the same length as the exposure (" + str(n) + ")")
        if np.any(np.isnan(v)):
            raise ValueError("Missing values are not allowed in the " + label + " values")
    if not np.isin(obs_a, [0, 1]).all():
        raise ValueError("Only binary exposures are supported")
    pa1 = check_propensity(pa1)
    rule = rule_vector(rule, n)

    # Samples that follow the rule in the observed data
    follows = np.where(obs_a == rule, 1, 0)
    # Probability of the exposure the rule assigns (Pr(A=0|W) when the rule is 0)
    pa = np.where(rule == 1, pa1, 1 - pa1)
    # E(Y|A=0,W) when the rule is 0
    qa = np.where(rule == 1, q1w, q0w)

    return pd.DataFrame({'A': follows, 'Y': obs_y, 'pA': pa, 'Q': qa})


def estimate_step(data):
    """Plug-in estimate of the mean under the rule and its influence curve for the current outcome estimates.
    Returns a copy of `data` with the clever covariate `H`, psi, and the influence curve.
    """
    data = data.copy()
    psi = np.mean(data['Q'])
    data['H'] = data['A'] / data['pA']
    ic = np.asarray(data['H'] * (data['Y'] - data['Q']) + data['Q'] - psi)
    return data, psi, ic


def fluctuate(y, offset, haw, verbose=False):
    """Fits the one-parameter logistic fluctuation model, logit(Q*) = logit(Q) + epsilon*H, with no intercept.
    Convergence, separation, and numerical warnings raised during the fit are re-issued once each as
    FluctuationWarning and returned as messages. When the model cannot be fit, or epsilon is not finite, epsilon is set
    to zero.

    Returns
    -------
    epsilon, list of diagnostic messages
    """
    f = sm.families.family.Binomial()
    diagnostics = []
    log = None
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        try:
            log = sm.GLM(np.asarray(y, dtype=float),             # Outcome / dependent variable
                         np.asarray(haw, dtype=float).reshape(-1, 1),  # Clever covariate, no intercept
                         offset=np.asarray(offset, dtype=float),  # Offset by current outcome estimates
                         family=f).fit()
            epsilon = log.params[0]
        except (PerfectSeparationError, np.linalg.LinAlgError) as err:
            epsilon = 0.
            failure = "Fluctuation model could not be fit (" + str(err) + "). Epsilon was set to 0"
        else:
            failure = None
            if not np.isfinite(epsilon):
                epsilon = 0.
                failure = "Fluctuation model returned a non-finite epsilon. Epsilon was set to 0"

    for w in caught:
        if issubclass(w.category, _FIT_WARNINGS):
            message = w.category.__name__ + ": " + str(w.message)
            if message not in diagnostics:  # one entry per distinct warning of this fit
                diagnostics.append(message)
        else:  # unrelated library warnings pass through unchanged
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
    if failure is not None:
        diagnostics.append(failure)
    for message in diagnostics:
        warnings.warn(message, FluctuationWarning)

    if verbose and log is not None:  # Optional argument to print each intermediary result
        print('==============================================================================')
        print('Fluctuation Model')
        print(log.summary())

    return float(epsilon), diagnostics


def update_step(data, q_bounds=(1e-4, 1 - 1e-4), verbose=False):
    """Updates the outcome estimates under the rule with the logistic fluctuation model. The fluctuation is fit among
    observations following the rule with Q strictly within (0, 1). If there are no such observations, epsilon is 0 and
    the estimates are left as is. Otherwise every observation is updated.

    Returns
    -------
    updated copy of `data`, epsilon, list of diagnostic messages
    """
    data = data.copy()
    data['H'] = data['A'] / data['pA']
    subset = np.asarray((data['A'] == 1) & (data['Q'] > 0) & (data['Q'] < 1))
    epsilon = 0.
    diagnostics = []

    if np.sum(subset) > 0:
        q_trunc = bounding(data['Q'], bounds=q_bounds)
        offset = logit(q_trunc)
        haw = np.asarray(data['H'])
        epsilon, diagnostics = fluctuate(y=np.asarray(data['Y'])[subset],
                                         offset=offset[subset],
                                         haw=haw[subset],
                                         verbose=verbose)
        data['Q'] = inverse_logit(offset + epsilon * haw)

    return data, epsilon, diagnostics


def targeting_loop(data, max_iter=1000, q_bounds=(1e-4, 1 - 1e-4), verbose=False):
    """Iterative targeting of the outcome estimates. Each iteration fluctuates Q and re-estimates psi and the
    influence curve. Iterations stop once the absolute mean of the influence curve is below 1/n, or after `max_iter`
    iterations.

    Parameters
    ----------
    data : DataFrame
        Data with columns `A` (follows the rule), `Y`, `pA` (probability of the rule-assigned exposure), and `Q`
        (outcome estimate under the rule)
    max_iter : int, optional
        Maximum number of iterations. Default is 1000
    q_bounds : float, list, tuple, optional
        Bounds for Q before it is put on the logit scale. Default is (1e-4, 1-1e-4)
    verbose : bool, optional
        Whether to print each fluctuation model and iteration. Default is False

    Returns
    -------
    TargetingResult
    """
    if isinstance(max_iter, bool) or not isinstance(max_iter, (int, np.integer)) or max_iter < 1:
        raise ValueError("max_iter must be a positive integer")
    check_bounds(q_bounds)
    missing = [c for c in ['A', 'Y', 'pA', 'Q'] if c not in data.columns]
    if missing:
        raise ValueError("The data is missing the following column(s): " + str(missing))
    if data.shape[0] == 0:
        raise ValueError("The data must contain at least one observation")
    check_propensity(data['pA'], label='propensity under the rule')

    data = data.reset_index(drop=True)
    order = 1 / data.shape[0]

    # Initial estimate
    data, psi, ic = estimate_step(data)

    converged = False
    history, diagnostics = [], []
    for iteration in range(1, max_iter + 1):
        data, epsilon, messages = update_step(data, q_bounds=q_bounds, verbose=verbose)
        data, psi, ic = estimate_step(data)
        ed = np.mean(ic)
        history.append([iteration, epsilon, psi, ed])
        diagnostics.extend(messages)
        if verbose:
            print('Iteration ' + str(iteration) + ': epsilon=' + str(epsilon) + ', psi=' + str(psi) +
                  ', mean IC=' + str(ed))

        if np.abs(ed) < order:
            converged = True
            break

    if not converged:
        warnings.warn("The targeting procedure did not converge within " + str(max_iter) + " iterations. The mean "
                      "of the influence curve (" + str(np.mean(ic)) + ") is not below 1/n", UserWarning)

    return TargetingResult(data=data,
                           psi=psi,
                           steps=iteration,
                           influence_curve=ic,
                           ed=np.mean(ic),
                           ed2=np.mean(ic ** 2),
                           converged=converged,
                           history=pd.DataFrame(history, columns=['iteration', 'epsilon', 'psi', 'ed']),
                           diagnostics=tuple(diagnostics))
