"""Usage quotas for AI coding tools, refreshed in the background."""

__version__ = "0.4.0"
