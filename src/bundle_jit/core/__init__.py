"""Quaternion math, value types and the autodiff cost-function wrapper."""
