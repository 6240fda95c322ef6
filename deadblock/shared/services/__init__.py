"""Coordination services: queue, pairing and rematch negotiation."""

from .match_pairer import MatchPairer, PairingResult, PairingStatus, choose_opponent
from .queue_manager import QueueManager
from .rematch_negotiator import AcceptResult, AcceptStatus, RematchNegotiator

__all__ = [
    "AcceptResult",
    "AcceptStatus",
    "MatchPairer",
    "PairingResult",
    "PairingStatus",
    "QueueManager",
    "RematchNegotiator",
    "choose_opponent",
]
