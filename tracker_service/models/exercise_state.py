"""
RepTrack Tracker Service - Exercise State

The record threaded through every processed frame. Detectors never mutate
it; each frame produces a new copy.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict


class Phase(Enum):
    """Last recognized body configuration."""
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class FeedbackCategory(Enum):
    """What kind of message the current feedback text is."""
    READY = "ready"
    REPOSITION = "reposition"
    CANNOT_DETECT = "cannot_detect"
    PRIMING = "priming"
    IN_PROGRESS = "in_progress"
    REP_COMPLETED = "rep_completed"
    HOLDING = "holding"


INITIAL_FEEDBACK = "Get ready..."


@dataclass(frozen=True)
class ExerciseState:
    """Rep count, phase and feedback for the exercise being tracked."""
    count: int = 0
    phase: Phase = Phase.NEUTRAL
    feedback: str = INITIAL_FEEDBACK
    timer: int = 0
    is_in_position: bool = False
    feedback_category: FeedbackCategory = FeedbackCategory.READY

    def update(self, **changes: Any) -> "ExerciseState":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def with_feedback(self, category: FeedbackCategory, text: str) -> "ExerciseState":
        return replace(self, feedback=text, feedback_category=category)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "count": self.count,
            "phase": self.phase.value,
            "feedback": self.feedback,
            "feedbackCategory": self.feedback_category.value,
            "timer": self.timer,
            "isInPosition": self.is_in_position,
        }


def init_exercise_state() -> ExerciseState:
    """Fresh state for a new workout, exercise switch or reset."""
    return ExerciseState()
