"""
Analytical power formulas based on the non-central t distribution.

Single source of truth: imported by specs/ and any future tests.
"""

import numpy as np
from scipy.stats import nct
from scipy.stats import t as t_dist


def analytical_two_group_power(difference, sd, n_per_group, alpha=0.05):
    """
    Power of a two-sided, equal-variance two-sample t-test.

    Args:
        difference: true mean difference between the groups
        sd: common within-group standard deviation
        n_per_group: subjects per group
        alpha: significance level
    """
    df = 2 * n_per_group - 2
    noncentrality = difference / (sd * np.sqrt(2 / n_per_group))
    t_crit = t_dist.ppf(1 - alpha / 2, df)
    return 1 - nct.cdf(t_crit, df, noncentrality) + nct.cdf(-t_crit, df, noncentrality)


def analytical_two_group_sample_size(difference, sd, target_power, alpha=0.05, max_n=10_000):
    """Smallest n per group whose analytical power reaches *target_power*."""
    for n in range(2, max_n + 1):
        if analytical_two_group_power(difference, sd, n, alpha) >= target_power:
            return n
    raise ValueError("target power not reached")
