"""tk-proxy — multi-host aggregation and daily submission for tokscale reports."""

__version__ = "1.0.0"
