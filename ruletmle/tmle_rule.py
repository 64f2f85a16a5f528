import warnings
from collections import namedtuple

import numpy as np

from ruletmle.utils import tmle_unit_bounds, tmle_unit_unbound
from ruletmle.targeting import rule_vector, rule_data, targeting_loop
from ruletmle.inference import wald_confidence_interval


RuleTMLEResult = namedtuple('RuleTMLEResult', ['psi', 'se', 'ci', 'influence_curve', 'rule', 'steps', 'converged',
                                               'initial_data', 'tmle_data', 'targeting'])
RuleTMLEResult.__doc__ = """Output of `rule_tmle`. `se` and `ci` come from the influence curve, `rule` is the rule
applied to each observation, `initial_data` and `tmle_data` are the data before and after targeting, and `targeting`
is the full TargetingResult."""


def rule_tmle(obs_a, obs_y, pa1, q0w, q1w, rule, max_iter=1000, q_bounds=(1e-4, 1 - 1e-4), alpha=0.05,
              verbose=False):
    """Targeted maximum likelihood estimate of the mean outcome if exposure had been assigned following `rule`, with
    influence curve based inference. The nuisance estimates are taken as given.

    Parameters
    ----------
    obs_a : array-like
        Observed exposure, A
    obs_y : array-like
        Observed outcome, Y. Must be on the unit scale
    pa1 : array-like
        Estimate of g, Pr(A=1|W)
    q0w : array-like
        Estimate of Q(0,W), E(Y|A=0,W)
    q1w : array-like
        Estimate of Q(1,W), E(Y|A=1,W)
    rule : int, array-like
        Exposure assigned by the rule. A single value is applied to everyone
    max_iter : int, optional
        Maximum number of iterations for the iterative TMLE. Default is 1000
    q_bounds : float, list, tuple, optional
        Bounds for the Q estimates in the fluctuation model. Default is (1e-4, 1-1e-4)
    alpha : float, optional
        Alpha for the confidence interval level. Default is 0.05
    verbose : bool, optional
        Whether to print the fluctuation models and iterations. Default is False

    Returns
    -------
    RuleTMLEResult
    """
    rule = rule_vector(rule, np.asarray(obs_a).shape[0])
    initial = rule_data(obs_a=obs_a, obs_y=obs_y, pa1=pa1, q0w=q0w, q1w=q1w, rule=rule)

    res = targeting_loop(initial, max_iter=max_iter, q_bounds=q_bounds, verbose=verbose)
    se, ci = wald_confidence_interval(psi=res.psi, ic=res.influence_curve, alpha=alpha)

    return RuleTMLEResult(psi=res.psi,
                          se=se,
                          ci=ci,
                          influence_curve=res.influence_curve,
                          rule=rule,
                          steps=res.steps,
                          converged=res.converged,
                          initial_data=initial,
                          tmle_data=res.data,
                          targeting=res)


class RuleTMLE:
    r"""Iterative targeted maximum likelihood estimator for the mean outcome under a user-specified treatment rule.
    The rule can assign the same exposure to everyone or a per-observation exposure (e.g., an estimated optimal
    individualized treatment rule). Nuisance estimates, Pr(A=1|W), E(Y|A=0,W), and E(Y|A=1,W), are estimated outside
    of this class (preferably by a super learner with sample splitting) and supplied through `nuisance_estimates()`.

    Parameters
    ----------
    df : DataFrame
        Pandas dataframe containing the variables of interest
    exposure : str
        Column label for the exposure of interest. Only binary exposures are supported
    outcome : str
        Column label for the outcome of interest
    alpha : float, optional
        Alpha for confidence interval level. Default is 0.05
    continuous_bound : float, optional
        Optional argument to control the bounding feature for continuous outcomes. The bounding process may result
        in values of 0,1 which are undefined for logit(x). This parameter adds or substracts from the scenarios of
        0,1 respectively. Default value is 0.0005
    verbose : bool, optional
        Optional argument for verbose estimation. With verbose estimation, the fluctuation model fits for each
        iteration are printed to the console

    Following is a general narrative of the estimation procedure

    1. The observed data and nuisance estimates are aligned with the rule. An observation follows the rule when its
    observed exposure is the exposure the rule assigns it.

    2. The clever covariate is calculated

    .. math::
        H = \frac{I(A = d(W))}{\widehat{\Pr}(A = d(W) | W)}

    3. The outcome estimates are fluctuated with a logistic model with the offset of the current estimates and no
    intercept

    .. math::
        \text{logit}(Q^*(d(W), W)) = \text{logit}(Q(d(W), W)) + \epsilon H

    4. Steps 2-3 are repeated until the mean of the influence curve is smaller than 1/n

    .. math::
        D = H (Y - Q^*) + Q^* - \psi

    The point estimate is the mean of the targeted outcome estimates and the variance is estimated by the mean of the
    squared influence curve.

    Examples
    --------
    >>> tmle = RuleTMLE(df, exposure='art', outcome='dead')
    >>> tmle.nuisance_estimates(pa1='g1w', q0w='q0w', q1w='q1w')
    >>> tmle.fit(rule=1)
    >>> tmle.summary()

    Rule assigning exposure by a covariate

    >>> tmle.fit(rule=np.where(df['male'] == 1, 1, 0))
    >>> tmle.summary()

    References
    ----------
    van der Laan MJ, and Rose S. Targeted learning in data science: causal inference for complex longitudinal
    studies. Springer Science & Business Media, 2018.
    """
    def __init__(self, df, exposure, outcome, alpha=0.05, continuous_bound=0.0005, verbose=False):
        # Dropping missing exposure or outcome data
        self._complete_ = np.asarray(df[[exposure, outcome]].notna().all(axis=1))
        self._n_input_ = df.shape[0]
        if not np.all(self._complete_):
            warnings.warn("There is missing data in the exposure or outcome. RuleTMLE will drop all missing data. "
                          "RuleTMLE will fit "
                          + str(np.sum(self._complete_)) +
                          ' of ' + str(df.shape[0]) + ' observations', UserWarning)
        self.df = df.loc[self._complete_].copy().reset_index(drop=True)

        if not self.df[exposure].value_counts().index.isin([0, 1]).all():
            raise ValueError("RuleTMLE only supports binary exposures currently")

        # Manage outcomes
        if self.df[outcome].value_counts().index.isin([0, 1]).all():
            self._continuous_outcome = False
            self._cb = 0.0
        else:
            self._continuous_outcome = True
            self._continuous_min = np.min(self.df[outcome])
            self._continuous_max = np.max(self.df[outcome])
            self._cb = continuous_bound
            self.df[outcome] = tmle_unit_bounds(y=self.df[outcome], mini=self._continuous_min,
                                                maxi=self._continuous_max, bound=self._cb)

        self.exposure = exposure
        self.outcome = outcome
        self.alpha = alpha

        # Output attributes
        self.psi = None
        self.psi_se = None
        self.psi_ci = None
        self.influence_curve = None
        self.rule = None
        self.steps = None
        self.converged = None
        self.results = None

        # Storage for items I need later
        self._pa1_ = None
        self._q0w_ = None
        self._q1w_ = None
        self._max_iter_ = None
        self._verbose_ = verbose

    def nuisance_estimates(self, pa1, q0w, q1w):
        """Supply the nuisance function estimates. Each can be a column label of `df` or an array-like with one value
        per observation.

        Parameters
        ----------
        pa1 : str, array-like
            Estimated probability of exposure, Pr(A=1|W). All values must be strictly between 0 and 1
        q0w : str, array-like
            Estimated outcome under no exposure, E(Y|A=0,W). On the scale of the input outcome
        q1w : str, array-like
            Estimated outcome under exposure, E(Y|A=1,W). On the scale of the input outcome
        """
        self._pa1_ = self._aligned_(pa1, 'pa1')
        q0w = self._aligned_(q0w, 'q0w')
        q1w = self._aligned_(q1w, 'q1w')

        if self._continuous_outcome:  # Outcome estimates put on the same unit scale as the outcome
            q0w = tmle_unit_bounds(y=q0w, mini=self._continuous_min, maxi=self._continuous_max, bound=self._cb)
            q1w = tmle_unit_bounds(y=q1w, mini=self._continuous_min, maxi=self._continuous_max, bound=self._cb)

        self._q0w_ = q0w
        self._q1w_ = q1w

    def fit(self, rule, max_iter=1000, q_bounds=(1e-4, 1 - 1e-4)):
        """Estimate the mean outcome under the rule with the iterative TMLE. Confidence intervals are calculated using
        the influence curve.

        Parameters
        ----------
        rule : int, str, array-like
            Exposure assigned by the rule. Either a single value (0 or 1) for everyone, a column label of `df`, or an
            array-like with one value per observation
        max_iter : int, optional
            Maximum number of iterations for the iterative TMLE. Default is 1000
        q_bounds : float, list, tuple, optional
            Bounds for the Q estimates in the fluctuation model. Default is (1e-4, 1-1e-4)

        Note
        ----
        The nuisance estimates must be specified prior to `fit()`

        Returns
        -------
        `RuleTMLE` gains `psi`, `psi_se`, and `psi_ci` along with the influence curve and the full `results`
        """
        if self._pa1_ is None:
            raise ValueError("The nuisance_estimates() function must be specified before the fit() function")

        if isinstance(rule, str):
            rule = self.df[rule]
        elif np.ndim(rule) == 1:
            rule = self._aligned_(rule, 'rule')

        self._max_iter_ = max_iter
        self.results = rule_tmle(obs_a=self.df[self.exposure], obs_y=self.df[self.outcome],
                                 pa1=self._pa1_, q0w=self._q0w_, q1w=self._q1w_, rule=rule,
                                 max_iter=max_iter, q_bounds=q_bounds, alpha=self.alpha, verbose=self._verbose_)

        if self._continuous_outcome:
            scale = self._continuous_max - self._continuous_min
            self.psi = tmle_unit_unbound(self.results.psi, mini=self._continuous_min, maxi=self._continuous_max)
            self.psi_se = self.results.se * scale
            self.psi_ci = [tmle_unit_unbound(self.results.ci[0], mini=self._continuous_min, maxi=self._continuous_max),
                           tmle_unit_unbound(self.results.ci[1], mini=self._continuous_min, maxi=self._continuous_max)]
            self.influence_curve = self.results.influence_curve * scale
        else:
            self.psi = self.results.psi
            self.psi_se = self.results.se
            self.psi_ci = list(self.results.ci)
            self.influence_curve = self.results.influence_curve

        self.rule = self.results.rule
        self.steps = self.results.steps
        self.converged = self.results.converged

    def summary(self, decimal=3):
        """Prints summary of the estimated mean under the treatment rule

        Parameters
        ----------
        decimal : int, optional
            Number of decimal places to display. Default is 3
        """
        if self.psi is None:
            raise ValueError('The fit() statement must be ran before summary()')

        print('======================================================================')
        print('         Targeted Maximum Likelihood Estimator for a Rule             ')
        print('======================================================================')

        fmt = 'Treatment:        {:<15} No. Observations:     {:<20}'
        print(fmt.format(self.exposure, self.df.shape[0]))
        fmt = 'Outcome:          {:<15} No. Following Rule:   {:<20}'
        print(fmt.format(self.outcome, int(np.sum(self.results.initial_data['A']))))
        fmt = 'No. Iterations:   {:<15} Converged:            {:<20}'
        print(fmt.format(self.steps, str(self.converged)))
        fmt = 'Max. Iterations:  {:<15} Rule Treats:          {:<20}'
        print(fmt.format(self._max_iter_, int(np.sum(self.rule))))

        print('======================================================================')
        print('Mean under rule:    ', np.round(self.psi, decimals=decimal))
        print('SE:                 ', np.round(self.psi_se, decimals=decimal))
        print(str(round(100 * (1 - self.alpha))) + '% two-sided CI:   (' +
              str(np.round(self.psi_ci[0], decimals=decimal)), ',',
              str(np.round(self.psi_ci[1], decimals=decimal)) + ')')
        print('======================================================================')

    def _aligned_(self, values, label):
        # Column labels, or array-likes for either the input or the complete-case data
        if isinstance(values, str):
            return np.asarray(self.df[values], dtype=float)
        values = np.asarray(values, dtype=float)
        if values.shape == (self.df.shape[0], ):
            return values
        if values.shape == (self._n_input_, ):
            return values[self._complete_]
        raise ValueError("'" + label + "' must be a column label or have one value per observation")
