"""Numeric indicator primitives."""
