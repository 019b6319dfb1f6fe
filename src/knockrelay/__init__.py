"""knock-relay - pair a handheld controller with a desktop receiver."""

__version__ = "0.1.0"
