"""Google Business Profile review sync and reply publishing."""

__version__ = "0.1.0"
