from __future__ import annotations


class InvalidRunTransitionError(RuntimeError):
    """A lifecycle transition was requested that the state machine forbids."""
