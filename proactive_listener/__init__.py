"""Proactive listener — decides when incoming chat messages should interrupt the user."""

__version__ = "0.1.0"
