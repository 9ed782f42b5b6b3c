"""
RepTrack Tracker Service Models

Rule-based rep counting over a stream of 2-D poses.
"""

from .geometry import (
    Keypoint,
    Pose,
    KEYPOINT_NAMES,
    SKELETON_CONNECTIONS,
    RENDER_SCORE_THRESHOLD,
    angle_at_vertex,
    distance,
    get_keypoint,
    is_pose_valid,
)

from .exercise_state import (
    ExerciseState,
    FeedbackCategory,
    Phase,
    init_exercise_state,
)

from .detectors import (
    ExerciseType,
    ExerciseDetector,
    PushupDetector,
    SquatDetector,
    JumpingJackDetector,
    PlankDetector,
    ArmRaiseDetector,
    DETECTORS,
    get_detector,
    detect_pushup,
    detect_squat,
    detect_jumping_jack,
    detect_plank,
    detect_arm_raise,
)

from .pose_source import (
    PoseSource,
    PoseSourceError,
    QueuePoseSource,
    MediaPipePoseDetector,
    CameraPoseSource,
)

from .frame_driver import (
    FrameDriver,
    TrackerState,
    TrackerStateError,
    WorkoutSummary,
)

from .tracker_session import (
    TrackerSessionManager,
    get_session_manager,
)

__all__ = [
    # Geometry
    "Keypoint",
    "Pose",
    "KEYPOINT_NAMES",
    "SKELETON_CONNECTIONS",
    "RENDER_SCORE_THRESHOLD",
    "angle_at_vertex",
    "distance",
    "get_keypoint",
    "is_pose_valid",
    # Exercise state
    "ExerciseState",
    "FeedbackCategory",
    "Phase",
    "init_exercise_state",
    # Detectors
    "ExerciseType",
    "ExerciseDetector",
    "PushupDetector",
    "SquatDetector",
    "JumpingJackDetector",
    "PlankDetector",
    "ArmRaiseDetector",
    "DETECTORS",
    "get_detector",
    "detect_pushup",
    "detect_squat",
    "detect_jumping_jack",
    "detect_plank",
    "detect_arm_raise",
    # Pose sources
    "PoseSource",
    "PoseSourceError",
    "QueuePoseSource",
    "MediaPipePoseDetector",
    "CameraPoseSource",
    # Frame driver
    "FrameDriver",
    "TrackerState",
    "TrackerStateError",
    "WorkoutSummary",
    "TrackerSessionManager",
    "get_session_manager",
]
