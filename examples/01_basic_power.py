"""
Basic Power Analysis Example
============================

Between-subject study: does alcohol slow reaction times?
Checks whether a planned number of participants per group gives enough power.
"""

from simpower import SimPower

print("=" * 60)
print("BASIC POWER ANALYSIS EXAMPLE")
print("=" * 60)

# 1. Define the design: one between-subject factor with two groups
study = SimPower(between=("group", ["Control", "Alcohol"]))

# 2. Expected reaction times (ms) per group, shared sd
# Alcohol adds 25 ms on average (d = 0.25)
study.set_means("Control=400, Alcohol=425")
study.set_sd(100)

# 3. Power at 100 participants per group
study.find_power(sample_size=100)

# 4. Same question, results as a dictionary
result = study.find_power(sample_size=250, print_results=False, return_results=True)
print(f"\nPower at N=250 per group: {100 * result['results']['power']:.1f}%")
