"""ruletmle is a small library for the targeted maximum likelihood estimator (TMLE) of the mean outcome under a
user-specified treatment rule. Nuisance functions are estimated elsewhere and supplied as estimates, and the outcome
estimates are then iteratively targeted with a logistic fluctuation model until the efficient influence curve
estimating equation is solved.
"""

from .version import __version__

from .tmle_rule import RuleTMLE, RuleTMLEResult, rule_tmle
from .targeting import (TargetingResult, FluctuationWarning, rule_vector, rule_data, estimate_step, fluctuate,
                        update_step, targeting_loop)
from .inference import influence_curve_variance, wald_confidence_interval

from .utils import (probability_to_odds, logit, inverse_logit, bounding, check_bounds, check_propensity,
                    tmle_unit_bounds, tmle_unit_unbound)
