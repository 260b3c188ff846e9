"""Leaderboard points and rating engine."""

__version__ = "0.1.0"
