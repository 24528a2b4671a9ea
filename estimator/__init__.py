"""Estimator: hierarchical construction cost estimates."""

__version__ = "0.1.0"
