import pytest
import numpy as np
import numpy.testing as npt
import pandas as pd
import pandas.testing as pdt
from scipy.stats import logistic

from ruletmle import RuleTMLE, RuleTMLEResult, rule_tmle
from ruletmle.utils import tmle_unit_unbound


class TestRuleTMLE:

    @pytest.fixture
    def df(self):
        rng = np.random.default_rng(80901)
        n = 500
        d = pd.DataFrame()
        d['W'] = rng.normal(size=n)
        d['male'] = rng.binomial(n=1, p=0.5, size=n)
        d['A'] = rng.binomial(n=1, p=logistic.cdf(0.5 * d['W']), size=n)
        d['Y'] = rng.binomial(n=1, p=logistic.cdf(-0.5 + d['A'] + d['W']), size=n)
        d['C'] = 2 + d['A'] + d['W'] + rng.normal(size=n)
        d['g1w'] = logistic.cdf(0.5 * d['W'])
        d['q0w'] = logistic.cdf(-0.5 + d['W'])
        d['q1w'] = logistic.cdf(0.5 + d['W'])
        d['c0w'] = 2 + d['W']
        d['c1w'] = 3 + d['W']
        return d

    def test_error_continuous_exp(self, df):
        with pytest.raises(ValueError):
            RuleTMLE(df=df, exposure='W', outcome='Y')

    def test_error_fit(self, df):
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        with pytest.raises(ValueError):
            tmle.fit(rule=1)

    def test_error_summary(self, df):
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        tmle.nuisance_estimates(pa1='g1w', q0w='q0w', q1w='q1w')
        with pytest.raises(ValueError):
            tmle.summary()

    def test_error_nuisance_length(self, df):
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        with pytest.raises(ValueError):
            tmle.nuisance_estimates(pa1=[0.5, 0.5], q0w='q0w', q1w='q1w')

    def test_error_invalid_propensity(self, df):
        df['g1w'] = np.where(df['W'] > 2, 1.0, df['g1w'])
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        tmle.nuisance_estimates(pa1='g1w', q0w='q0w', q1w='q1w')
        with pytest.raises(ValueError, match="invalid propensity"):
            tmle.fit(rule=1)

    def test_warn_missing_data(self):
        df = pd.DataFrame()
        df['A'] = [1, 1, 0, 0, np.nan]
        df['Y'] = [np.nan, 0, 1, 0, 1]
        with pytest.warns(UserWarning):
            RuleTMLE(df=df, exposure='A', outcome='Y')

    def test_drop_missing_data(self):
        df = pd.DataFrame()
        df['A'] = [1, 1, 0, 0, np.nan]
        df['Y'] = [np.nan, 0, 1, 0, 1]
        with pytest.warns(UserWarning):
            tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        assert tmle.df.shape[0] == 3

    def test_nuisance_aligned_missing(self):
        df = pd.DataFrame()
        df['A'] = [1, 1, 0, 0, np.nan]
        df['Y'] = [np.nan, 0, 1, 0, 1]
        with pytest.warns(UserWarning):
            tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        tmle.nuisance_estimates(pa1=[0.1, 0.2, 0.3, 0.4, 0.5], q0w=[0.5]*5, q1w=[0.6]*5)
        npt.assert_allclose([0.2, 0.3, 0.4], tmle._pa1_)

    def test_continuous_processing(self):
        a_list = [0, 1, 1, 0, 1, 1, 0, 0]
        y_list = [1, -1, 5, 0, 0, 0, 10, -5]
        df = pd.DataFrame()
        df['A'] = a_list
        df['Y'] = y_list

        tmle = RuleTMLE(df=df, exposure='A', outcome='Y', continuous_bound=0.0001)

        # Checking all flagged parts are correct
        assert tmle._continuous_outcome is True
        assert tmle._continuous_min == -5
        assert tmle._continuous_max == 10
        assert tmle._cb == 0.0001

        # Checking that TMLE bounding works as intended
        y_bound = [2 / 5, 4 / 15, 2 / 3, 1 / 3, 1 / 3, 1 / 3, 0.9999, 0.0001]
        pdt.assert_series_equal(pd.Series(y_bound),
                                tmle.df['Y'],
                                check_dtype=False, check_names=False)

    def test_continuous_nuisance_bounded(self):
        df = pd.DataFrame()
        df['A'] = [0, 1, 1, 0]
        df['Y'] = [-5, 0, 5, 10]
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y', continuous_bound=0.001)
        tmle.nuisance_estimates(pa1=[0.5]*4, q0w=[-10, 0, 5, 10], q1w=[1, 2, 3, 4])
        npt.assert_allclose([0.001, 1/3, 2/3, 0.999], tmle._q0w_)
        npt.assert_allclose([6/15, 7/15, 8/15, 9/15], tmle._q1w_)

    def test_matches_function(self, df):
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        tmle.nuisance_estimates(pa1='g1w', q0w='q0w', q1w='q1w')
        tmle.fit(rule=1)

        res = rule_tmle(obs_a=df['A'], obs_y=df['Y'], pa1=df['g1w'], q0w=df['q0w'], q1w=df['q1w'], rule=1)
        npt.assert_allclose(res.psi, tmle.psi)
        npt.assert_allclose(res.se, tmle.psi_se)
        npt.assert_allclose(res.ci, tmle.psi_ci)
        assert tmle.steps == res.steps
        assert tmle.converged

    def test_arrays_match_labels(self, df):
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        tmle.nuisance_estimates(pa1='g1w', q0w='q0w', q1w='q1w')
        tmle.fit(rule='male')
        labels = tmle.psi

        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        tmle.nuisance_estimates(pa1=np.asarray(df['g1w']), q0w=list(df['q0w']), q1w=df['q1w'])
        tmle.fit(rule=np.asarray(df['male']))
        npt.assert_allclose(labels, tmle.psi)
        npt.assert_equal(df['male'], tmle.rule)

    def test_rule_contrast(self, df):
        # Y is more likely under A=1 for everyone
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        tmle.nuisance_estimates(pa1='g1w', q0w='q0w', q1w='q1w')
        tmle.fit(rule=1)
        treat_all = tmle.psi
        tmle.fit(rule=0)
        treat_none = tmle.psi
        assert treat_all > treat_none

    def test_continuous_outcome(self, df):
        tmle = RuleTMLE(df=df, exposure='A', outcome='C')
        tmle.nuisance_estimates(pa1='g1w', q0w='c0w', q1w='c1w')
        tmle.fit(rule=1)

        mini, maxi = np.min(df['C']), np.max(df['C'])
        npt.assert_allclose(tmle_unit_unbound(tmle.results.psi, mini, maxi), tmle.psi)
        npt.assert_allclose(tmle.results.se * (maxi - mini), tmle.psi_se)
        npt.assert_allclose(tmle.psi - tmle.psi_ci[0], tmle.psi_ci[1] - tmle.psi, rtol=1e-8)
        assert mini < tmle.psi < maxi
        # true mean under treat-all is 3
        npt.assert_allclose(3, tmle.psi, atol=0.3)

    def test_alpha(self, df):
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y', alpha=0.1)
        tmle.nuisance_estimates(pa1='g1w', q0w='q0w', q1w='q1w')
        tmle.fit(rule=1)
        npt.assert_allclose(1.644854 * tmle.psi_se, tmle.psi_ci[1] - tmle.psi, rtol=1e-5)

    def test_summary(self, df, capsys):
        tmle = RuleTMLE(df=df, exposure='A', outcome='Y')
        tmle.nuisance_estimates(pa1='g1w', q0w='q0w', q1w='q1w')
        tmle.fit(rule='male')
        tmle.summary()
        captured = capsys.readouterr()
        assert 'Mean under rule' in captured.out
        assert '95% two-sided CI' in captured.out

    def test_result_documented(self):
        assert 'rule_tmle' in RuleTMLEResult.__doc__
        assert 'TargetingResult' in RuleTMLEResult.__doc__
