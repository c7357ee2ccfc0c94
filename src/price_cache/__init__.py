"""price-cache: cached historical price series for a fixed asset catalog."""

__version__ = "0.1.0"
