"""Council - per-agent quantitative trade decisions and position exits."""

__version__ = "1.0.0"
