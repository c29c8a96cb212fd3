"""
Gate enforcement: the phase state machine, signature tokens, and the
independent checks wired in front of transitions.
"""

from .machine import PhaseStateMachine, TransitionCheck
from .signatures import SignatureAudit, SignatureToken

__all__ = [
    "PhaseStateMachine",
    "SignatureAudit",
    "SignatureToken",
    "TransitionCheck",
]
