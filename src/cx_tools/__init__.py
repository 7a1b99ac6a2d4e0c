"""cx-tools - ConnexCS command-line tools."""

__version__ = "1.0.0"
