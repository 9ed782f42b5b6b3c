"""
RepTrack Tracker Service - Pose Geometry

Keypoint/pose data types and the 2-D geometric primitives every exercise
detector is built on: joint angle, distance and the pose quality gate.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════════════
# JOINT VOCABULARY
# ═══════════════════════════════════════════════════════════════════════════════

KEYPOINT_NAMES: Tuple[str, ...] = (
    "nose",
    "left_eye",
    "right_eye",
    "left_ear",
    "right_ear",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
)

# Edges drawn by skeleton renderers
SKELETON_CONNECTIONS: Tuple[Tuple[str, str], ...] = (
    ("nose", "left_eye"), ("nose", "right_eye"),
    ("left_eye", "left_ear"), ("right_eye", "right_ear"),
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_elbow"), ("right_shoulder", "right_elbow"),
    ("left_elbow", "left_wrist"), ("right_elbow", "right_wrist"),
    ("left_shoulder", "left_hip"), ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    ("left_hip", "left_knee"), ("right_hip", "right_knee"),
    ("left_knee", "left_ankle"), ("right_knee", "right_ankle"),
)

# Minimum keypoint score for a joint to be drawn
RENDER_SCORE_THRESHOLD = 0.3

# Mean keypoint score a pose must exceed to be considered at all
POSE_VALIDITY_THRESHOLD = 0.30


# ═══════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Keypoint:
    """A single named joint in image coordinates (y grows downward)."""
    x: float
    y: float
    score: Optional[float] = None
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "score": self.score, "name": self.name}


@dataclass(frozen=True)
class Pose:
    """One detected body: an ordered sequence of keypoints."""
    keypoints: List[Keypoint] = field(default_factory=list)
    score: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pose":
        """
        Build a pose from a MoveNet-style payload.

        Expected shape: {"keypoints": [{"x", "y", "score", "name"}, ...], "score"?}

        Raises:
            ValueError: if the payload is not shaped like a pose
        """
        if not isinstance(data, dict):
            raise ValueError("Pose payload must be an object")

        raw_keypoints = data.get("keypoints")
        if not isinstance(raw_keypoints, list):
            raise ValueError("Pose payload must contain a 'keypoints' list")

        keypoints = []
        for raw in raw_keypoints:
            try:
                score = raw.get("score")
                keypoints.append(Keypoint(
                    x=float(raw["x"]),
                    y=float(raw["y"]),
                    score=float(score) if score is not None else None,
                    name=str(raw.get("name", "")),
                ))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ValueError(f"Invalid keypoint {raw!r}: {e}") from e

        score = data.get("score")
        return cls(keypoints=keypoints, score=float(score) if score is not None else None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict (for skeleton drawing)."""
        return {
            "score": self.score,
            "keypoints": [kp.to_dict() for kp in self.keypoints],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# PRIMITIVES
# ═══════════════════════════════════════════════════════════════════════════════

def get_keypoint(pose: Optional[Pose], name: str) -> Optional[Keypoint]:
    """Look up a joint by name. Returns None if the pose or the joint is missing."""
    if pose is None or not pose.keypoints:
        return None

    for keypoint in pose.keypoints:
        if keypoint.name == name:
            return keypoint
    return None


def angle_at_vertex(
    a: Optional[Keypoint],
    b: Optional[Keypoint],
    c: Optional[Keypoint]
) -> Optional[float]:
    """
    Calculate the angle at vertex b formed by points a-b-c.

    Uses the difference of the atan2 bearings of b->c and b->a, so the
    result does not depend on camera mirroring.

    Returns:
        Angle in degrees (0-180), or None if any point is missing
    """
    if a is None or b is None or c is None:
        return None

    radians = math.atan2(c.y - b.y, c.x - b.x) - math.atan2(a.y - b.y, a.x - b.x)
    angle = abs(radians * 180.0 / math.pi)

    if angle > 180.0:
        angle = 360.0 - angle

    return angle


def distance(a: Optional[Keypoint], b: Optional[Keypoint]) -> Optional[float]:
    """Euclidean distance between two points, or None if either is missing."""
    if a is None or b is None:
        return None

    return math.sqrt((b.x - a.x) ** 2 + (b.y - a.y) ** 2)


def is_pose_valid(pose: Optional[Pose]) -> bool:
    """
    Global pose quality gate.

    A pose is valid when the mean score over all of its keypoints (a missing
    score counts as 0) is strictly above POSE_VALIDITY_THRESHOLD. This is a
    whole-body filter: noisy joints an exercise does not use still count.
    """
    if pose is None or not pose.keypoints:
        return False

    total = math.fsum(kp.score or 0.0 for kp in pose.keypoints)
    return total / len(pose.keypoints) > POSE_VALIDITY_THRESHOLD


def is_finite(value: Optional[float]) -> bool:
    """True for a real, finite number."""
    return value is not None and math.isfinite(value)
