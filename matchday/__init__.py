"""Matchday: fixture ingestion, live match state and follower notifications."""

__version__ = "0.1.0"
