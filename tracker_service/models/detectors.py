"""
RepTrack Tracker Service - Exercise Detectors

Rule-based, per-frame rep detection for the supported exercises.

Every detector is a pure transition: (current pose, previous state) -> next
state. No detector keeps hidden state between frames, so the same detector
instance is shared by every tracking session.

Thresholds:
    push-up       mean elbow angle       down < 90    up > 160
    squat         mean knee angle        down < 120   up > 160
    jumping jack  wrist/shoulder and ankle/hip spread
                                         down both < 1.5   up > 2.5 and > 2.0
    plank         mean shoulder-hip-ankle angle, in position > 160 or < 20,
                  one count per 30 frames held
    arm raise     wrist 20px above / below shoulder
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .exercise_state import ExerciseState, FeedbackCategory, Phase
from .geometry import (
    Keypoint,
    Pose,
    angle_at_vertex,
    distance,
    get_keypoint,
    is_finite,
    is_pose_valid,
)


class ExerciseType(Enum):
    """Supported exercise types."""
    PUSHUP = "pushup"
    SQUAT = "squat"
    JUMPING_JACK = "jumpingJack"
    PLANK = "plank"
    ARM_RAISE = "armRaise"

    @property
    def summary_key(self) -> str:
        """Field name used for this exercise in a workout summary."""
        return _SUMMARY_KEYS[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_SUMMARY_KEYS = {
    ExerciseType.PUSHUP: "pushups",
    ExerciseType.SQUAT: "squats",
    ExerciseType.JUMPING_JACK: "jumpingJacks",
    ExerciseType.PLANK: "planks",
    ExerciseType.ARM_RAISE: "armRaises",
}

_DISPLAY_NAMES = {
    ExerciseType.PUSHUP: "Push-ups",
    ExerciseType.SQUAT: "Squats",
    ExerciseType.JUMPING_JACK: "Jumping Jacks",
    ExerciseType.PLANK: "Plank",
    ExerciseType.ARM_RAISE: "Arm Raises",
}


def mean_of_available(values: Iterable[Optional[float]]) -> Optional[float]:
    """Mean of the finite values, or None when there are none."""
    available = [v for v in values if is_finite(v)]
    if not available:
        return None
    return sum(available) / len(available)


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTOR BASE
# ═══════════════════════════════════════════════════════════════════════════════

class ExerciseDetector(ABC):
    """
    Shared detection flow.

    1. Invalid pose -> previous state, only feedback replaced (reposition).
    2. Metric not computable on either side -> previous state, only feedback
       replaced (cannot detect).
    3. Otherwise apply the exercise's phase rules.
    """

    exercise_type: ExerciseType
    reposition_message: str = "Please reposition yourself so you are fully visible"
    cannot_detect_message: str = "Cannot detect body. Please adjust position."

    def detect(self, pose: Optional[Pose], prev_state: ExerciseState) -> ExerciseState:
        if not is_pose_valid(pose):
            return prev_state.with_feedback(FeedbackCategory.REPOSITION, self.reposition_message)

        metric = self.measure(pose)
        if metric is None:
            return prev_state.with_feedback(FeedbackCategory.CANNOT_DETECT, self.cannot_detect_message)

        return self.transition(metric, prev_state)

    __call__ = detect

    @abstractmethod
    def measure(self, pose: Pose):
        """Compute the exercise metric, or None if it cannot be computed."""

    @abstractmethod
    def transition(self, metric, prev_state: ExerciseState) -> ExerciseState:
        """Apply phase/threshold rules to a computed metric."""


class JointAngleDetector(ExerciseDetector):
    """Metric is the mean of a left/right joint angle (single side if only one is visible)."""

    left_joints: Tuple[str, str, str]
    right_joints: Tuple[str, str, str]

    def measure(self, pose: Pose) -> Optional[float]:
        angles = [
            angle_at_vertex(*(get_keypoint(pose, name) for name in joints))
            for joints in (self.left_joints, self.right_joints)
        ]
        return mean_of_available(angles)


class AngleRepDetector(JointAngleDetector):
    """Down below one angle, up above another; a rep is down -> up."""

    down_threshold: float
    up_threshold: float

    rep_message = "Good job! Keep going!"
    down_message: str
    start_message: str
    in_progress_message = "Keep going!"
    # Whether the threshold angles themselves fall in the "keep going" band
    band_includes_thresholds = True

    def in_middle_band(self, angle: float) -> bool:
        if self.band_includes_thresholds:
            return self.down_threshold <= angle <= self.up_threshold
        return self.down_threshold < angle < self.up_threshold

    def transition(self, angle: float, prev_state: ExerciseState) -> ExerciseState:
        if angle > self.up_threshold and prev_state.phase == Phase.DOWN:
            return prev_state.update(
                count=prev_state.count + 1,
                phase=Phase.UP,
                feedback=self.rep_message,
                feedback_category=FeedbackCategory.REP_COMPLETED,
            )

        if angle < self.down_threshold and prev_state.phase != Phase.DOWN:
            return prev_state.update(
                phase=Phase.DOWN,
                feedback=self.down_message,
                feedback_category=FeedbackCategory.IN_PROGRESS,
            )

        if angle > self.up_threshold and prev_state.phase == Phase.NEUTRAL:
            return prev_state.update(
                phase=Phase.UP,
                feedback=self.start_message,
                feedback_category=FeedbackCategory.PRIMING,
            )

        if self.in_middle_band(angle):
            return prev_state.with_feedback(FeedbackCategory.IN_PROGRESS, self.in_progress_message)

        return prev_state


# ═══════════════════════════════════════════════════════════════════════════════
# EXERCISES
# ═══════════════════════════════════════════════════════════════════════════════

class PushupDetector(AngleRepDetector):
    exercise_type = ExerciseType.PUSHUP
    reposition_message = "Please reposition so your shoulders and arms are visible"
    cannot_detect_message = "Cannot detect elbows. Please adjust position."

    left_joints = ("left_shoulder", "left_elbow", "left_wrist")
    right_joints = ("right_shoulder", "right_elbow", "right_wrist")
    down_threshold = 90.0
    up_threshold = 160.0
    band_includes_thresholds = False

    down_message = "Now push up!"
    start_message = "Lower your body by bending your elbows"


class SquatDetector(AngleRepDetector):
    exercise_type = ExerciseType.SQUAT
    reposition_message = "Please reposition so your hips and knees are visible"
    cannot_detect_message = "Cannot detect knees. Please adjust position."

    left_joints = ("left_hip", "left_knee", "left_ankle")
    right_joints = ("right_hip", "right_knee", "right_ankle")
    down_threshold = 120.0
    up_threshold = 160.0

    down_message = "Now stand up!"
    start_message = "Bend your knees to squat down"


class JumpingJackDetector(ExerciseDetector):
    """
    Arms and legs together is "down", spread apart is "up".

    Wrist spread is normalized by shoulder width and ankle spread by hip
    width so the ratios do not depend on body size or camera distance.
    """

    exercise_type = ExerciseType.JUMPING_JACK
    reposition_message = "Please reposition so your full body is visible"
    cannot_detect_message = "Cannot detect limbs. Please adjust position."

    closed_threshold = 1.5
    wrist_open_threshold = 2.5
    ankle_open_threshold = 2.0

    def measure(self, pose: Pose) -> Optional[Tuple[float, float]]:
        shoulders = distance(get_keypoint(pose, "left_shoulder"), get_keypoint(pose, "right_shoulder"))
        wrists = distance(get_keypoint(pose, "left_wrist"), get_keypoint(pose, "right_wrist"))
        hips = distance(get_keypoint(pose, "left_hip"), get_keypoint(pose, "right_hip"))
        ankles = distance(get_keypoint(pose, "left_ankle"), get_keypoint(pose, "right_ankle"))

        # Zero widths cannot normalize
        if not all(is_finite(d) and d > 0 for d in (shoulders, wrists, hips, ankles)):
            return None

        return wrists / shoulders, ankles / hips

    def transition(self, ratios: Tuple[float, float], prev_state: ExerciseState) -> ExerciseState:
        wrist_ratio, ankle_ratio = ratios
        spread = wrist_ratio > self.wrist_open_threshold and ankle_ratio > self.ankle_open_threshold
        together = wrist_ratio < self.closed_threshold and ankle_ratio < self.closed_threshold

        if spread and prev_state.phase == Phase.DOWN:
            return prev_state.update(
                count=prev_state.count + 1,
                phase=Phase.UP,
                feedback="Great! Now bring arms and legs back",
                feedback_category=FeedbackCategory.REP_COMPLETED,
            )

        if together and prev_state.phase == Phase.UP:
            return prev_state.update(
                phase=Phase.DOWN,
                feedback="Jump and spread arms!",
                feedback_category=FeedbackCategory.IN_PROGRESS,
            )

        if together and prev_state.phase == Phase.NEUTRAL:
            return prev_state.update(
                phase=Phase.DOWN,
                feedback="Jump and spread your arms and legs",
                feedback_category=FeedbackCategory.PRIMING,
            )

        if spread and prev_state.phase == Phase.NEUTRAL:
            return prev_state.update(
                phase=Phase.UP,
                feedback="Bring arms and legs back together",
                feedback_category=FeedbackCategory.PRIMING,
            )

        return prev_state


class PlankDetector(JointAngleDetector):
    """
    Hold-based: counts seconds held rather than repetitions.

    The straight-line check accepts both a near-180 and a near-0 angle, so
    either body orientation relative to the camera counts as in position.
    """

    exercise_type = ExerciseType.PLANK
    reposition_message = "Please reposition yourself in a plank pose"
    cannot_detect_message = "Cannot detect body alignment. Please adjust position."

    left_joints = ("left_shoulder", "left_hip", "left_ankle")
    right_joints = ("right_shoulder", "right_hip", "right_ankle")
    straight_threshold = 160.0
    folded_threshold = 20.0
    frames_per_count = 30
    encouragement_after_frames = 90

    def transition(self, angle: float, prev_state: ExerciseState) -> ExerciseState:
        if not (angle > self.straight_threshold or angle < self.folded_threshold):
            return prev_state.update(
                is_in_position=False,
                feedback="Keep your body straight in plank position",
                feedback_category=FeedbackCategory.IN_PROGRESS,
            )

        timer = prev_state.timer + 1
        count = prev_state.count
        if timer % self.frames_per_count == 0:
            count = timer // self.frames_per_count

        if timer < self.encouragement_after_frames:
            feedback = "Hold the plank position"
        else:
            feedback = "Great job! Keep holding"

        return prev_state.update(
            count=count,
            timer=timer,
            is_in_position=True,
            feedback=feedback,
            feedback_category=FeedbackCategory.HOLDING,
        )


class ArmRaiseDetector(ExerciseDetector):
    """
    Compares wrist height with shoulder height per side.

    Above: either visible wrist more than 20px above its shoulder.
    Below: every visible wrist more than 20px below its shoulder.
    """

    exercise_type = ExerciseType.ARM_RAISE
    reposition_message = "Please reposition so your arms and shoulders are visible"
    cannot_detect_message = "Cannot detect shoulders and arms. Please adjust position."

    margin = 20.0

    def measure(self, pose: Pose) -> Optional[Tuple[bool, bool]]:
        sides: List[Tuple[Keypoint, Keypoint]] = []
        for side in ("left", "right"):
            wrist = get_keypoint(pose, f"{side}_wrist")
            shoulder = get_keypoint(pose, f"{side}_shoulder")
            if wrist is not None and shoulder is not None and is_finite(wrist.y) and is_finite(shoulder.y):
                sides.append((wrist, shoulder))

        if not sides:
            return None

        above = any(wrist.y < shoulder.y - self.margin for wrist, shoulder in sides)
        below = all(wrist.y > shoulder.y + self.margin for wrist, shoulder in sides)
        return above, below

    def transition(self, position: Tuple[bool, bool], prev_state: ExerciseState) -> ExerciseState:
        above, below = position

        if above and prev_state.phase == Phase.DOWN:
            return prev_state.update(
                count=prev_state.count + 1,
                phase=Phase.UP,
                feedback="Good! Now lower your arms",
                feedback_category=FeedbackCategory.REP_COMPLETED,
            )

        if below and prev_state.phase == Phase.UP:
            return prev_state.update(
                phase=Phase.DOWN,
                feedback="Raise your arms again",
                feedback_category=FeedbackCategory.IN_PROGRESS,
            )

        if below and prev_state.phase == Phase.NEUTRAL:
            return prev_state.update(
                phase=Phase.DOWN,
                feedback="Raise your arms above your shoulders",
                feedback_category=FeedbackCategory.PRIMING,
            )

        if above and prev_state.phase == Phase.NEUTRAL:
            return prev_state.update(
                phase=Phase.UP,
                feedback="Now lower your arms",
                feedback_category=FeedbackCategory.PRIMING,
            )

        return prev_state


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

DETECTORS: Dict[ExerciseType, ExerciseDetector] = {
    detector.exercise_type: detector
    for detector in (
        PushupDetector(),
        SquatDetector(),
        JumpingJackDetector(),
        PlankDetector(),
        ArmRaiseDetector(),
    )
}


def get_detector(exercise_type) -> ExerciseDetector:
    """
    Get the detector for an exercise.

    Args:
        exercise_type: ExerciseType or its string value ("pushup", "squat", ...)

    Raises:
        ValueError: for an unknown exercise type
    """
    return DETECTORS[ExerciseType(exercise_type)]


detect_pushup = DETECTORS[ExerciseType.PUSHUP].detect
detect_squat = DETECTORS[ExerciseType.SQUAT].detect
detect_jumping_jack = DETECTORS[ExerciseType.JUMPING_JACK].detect
detect_plank = DETECTORS[ExerciseType.PLANK].detect
detect_arm_raise = DETECTORS[ExerciseType.ARM_RAISE].detect
