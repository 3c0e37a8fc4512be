"""FreeFlow Engine - generative media job orchestration."""

__version__ = "1.0.0"
