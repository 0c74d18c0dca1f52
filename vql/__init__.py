"""vql: track compliance reviews of source files against quality principles."""

__version__ = "1.0.0"
