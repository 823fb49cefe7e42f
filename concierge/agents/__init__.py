"""
concierge autonomous agents.
"""

from .proactive import PassResult, ProactiveAgent

__all__ = [
    "PassResult",
    "ProactiveAgent",
]
