"""Deadblock online match coordination: matchmaking queue and rematch negotiation."""

__version__ = "1.0.0"
