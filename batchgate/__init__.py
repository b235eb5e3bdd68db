"""Launch, track and notify batch jobs on a cluster."""

__version__ = "0.3.0"
