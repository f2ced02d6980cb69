from .engine import TransitionError, apply_transition, can_transition, transition_or_conflict
from .registry import WORKFLOWS

__all__ = ["TransitionError", "WORKFLOWS", "apply_transition", "can_transition", "transition_or_conflict"]
