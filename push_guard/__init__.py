"""Push-time secret scanning for git repositories."""

__version__ = "0.3.0"
