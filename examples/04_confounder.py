"""
Confounder Example
==================

Adds a per-subject age covariate correlated with the Pre measurement and
includes it in the analysis formula.
"""

from simpower import SimPower

study = SimPower(
    between=("group", ["Control", "Alcohol"]),
    within=("measurement", ["Pre", "Post"]),
)
study.set_means([400, 400, 400, 430])
study.set_sd(100)
study.set_within_correlation(0.5)

# Age: mean 30, sd 8, r = 0.2 with Pre, clamped to 18-65, whole years
study.set_confounder("age", r=0.2, mean=30, sd=8, correlated_with="Pre", minimum=18, maximum=65, round_to_int=True)
study.set_formula("dv ~ group * measurement + age + (1|id)")

study.set_parallel(True)
study.set_simulations(400)
study.find_sample_size(from_size=40, to_size=200, by=20)
