"""Version information for pick-runner."""

__version__ = "1.2.0"
