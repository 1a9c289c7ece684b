"""
Mixed Design Example
====================

Control/Alcohol × Pre/Post: participants are measured before and after the
manipulation. Only Alcohol:Post is slowed, so the effect of interest is the
group × measurement interaction, tested with a random intercept per subject.
"""

from simpower import SimPower, TermSelector

study = SimPower(
    between=("group", ["Control", "Alcohol"]),
    within=("measurement", ["Pre", "Post"]),
)
study.set_means("Control:Pre=400, Control:Post=400, Alcohol:Pre=400, Alcohol:Post=430")
study.set_sd(100)
study.set_within_correlation(0.6)

# Default target for within designs is the interaction
study.find_power(sample_size=80)

# Same design, between-subject main effect instead
study.find_power(sample_size=80, target_test=TermSelector.main_effect("group"))
