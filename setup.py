from setuptools import setup, find_packages

setup(
    name="SimPower",
    version="0.1.0",
    packages=find_packages(include=["simpower", "simpower.*"]),
    install_requires=[
        "numpy",
        "pandas",
        "matplotlib",
        "statsmodels",
        "joblib",
    ],
    extras_require={
        "progress": ["tqdm"],
        "tests": ["pytest", "scipy", "tqdm"],
    },
    python_requires=">=3.9",
    author="Paweł Lenartowicz",
    description="Monte Carlo Power Estimation for Factorial Designs",
)
