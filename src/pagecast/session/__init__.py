"""
Session Module
==============

Top-level stream session state machine.

    - StreamSession: Launch, supervise, recover, terminate
    - RetryPolicy: Bounded retry budget with exponential backoff
    - check_transition: Session transition table guard
"""

from pagecast.session.session import StreamSession
from pagecast.session.transitions import ALLOWED_TRANSITIONS, RetryPolicy, check_transition


__all__ = [
    "StreamSession",
    "RetryPolicy",
    "ALLOWED_TRANSITIONS",
    "check_transition",
]
