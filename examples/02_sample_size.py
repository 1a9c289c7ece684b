"""
Sample Size Example
===================

Finds the number of participants per group needed for 80% and 90% power.
"""

from simpower import SimPower

study = SimPower(between=("group", ["Control", "Alcohol"]))
study.set_means([400, 425])
study.set_sd(100)
study.set_power([80, 90])

# Grid 100..500 step 50, interpolated to every integer size
study.find_sample_size(from_size=100, to_size=500, by=50, summary="long")
