"""Prediction market scanner - threat scoring over venue trade flow."""

__version__ = "0.1.0"
