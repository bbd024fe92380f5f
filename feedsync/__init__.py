"""feedsync - normalized aggregation of feeds, channels and repository activity."""

__version__ = "0.1.0"
