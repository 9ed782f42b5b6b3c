"""
Synthetic poses for tracker tests.

All coordinates are in pixels, y grows downward.
"""

import math
from typing import Dict, Iterable, Optional, Tuple

from tracker_service.models import KEYPOINT_NAMES, Keypoint, Pose

Point = Tuple[float, float]

# Roughly a person standing facing the camera
STANDING: Dict[str, Point] = {
    "nose": (300, 100),
    "left_eye": (290, 90),
    "right_eye": (310, 90),
    "left_ear": (280, 95),
    "right_ear": (320, 95),
    "left_shoulder": (250, 200),
    "right_shoulder": (350, 200),
    "left_elbow": (240, 280),
    "right_elbow": (360, 280),
    "left_wrist": (235, 360),
    "right_wrist": (365, 360),
    "left_hip": (270, 400),
    "right_hip": (330, 400),
    "left_knee": (270, 500),
    "right_knee": (330, 500),
    "left_ankle": (270, 600),
    "right_ankle": (330, 600),
}


def make_pose(
    overrides: Optional[Dict[str, Point]] = None,
    score: float = 0.9,
    missing: Iterable[str] = (),
) -> Pose:
    """Full 17-keypoint pose with optional moved or missing joints."""
    positions = dict(STANDING)
    positions.update(overrides or {})
    missing = set(missing)

    return Pose(keypoints=[
        Keypoint(x=positions[name][0], y=positions[name][1], score=score, name=name)
        for name in KEYPOINT_NAMES
        if name not in missing
    ])


def make_scored_pose(scores) -> Pose:
    """Pose whose keypoints carry exactly the given scores."""
    return Pose(keypoints=[
        Keypoint(x=float(i), y=float(i), score=s, name=f"kp_{i}")
        for i, s in enumerate(scores)
    ])


def arm_around(vertex: Point, angle: float, length: float = 100.0) -> Tuple[Point, Point]:
    """
    Two endpoints forming `angle` degrees at `vertex`.

    The first point sits straight above the vertex; the second is rotated
    clockwise from it by `angle`.
    """
    vx, vy = vertex
    theta = math.radians(angle)
    first = (vx, vy - length)
    second = (vx + length * math.sin(theta), vy - length * math.cos(theta))
    return first, second


def _joint_pose(joints, vertices, angle: float, **kwargs) -> Pose:
    overrides = {}
    for (a, b, c), vertex in zip(joints, vertices):
        first, second = arm_around(vertex, angle)
        overrides[a] = first
        overrides[b] = vertex
        overrides[c] = second
    return make_pose(overrides, **kwargs)


def elbow_pose(angle: float, **kwargs) -> Pose:
    """Both elbows bent to `angle` (shoulder-elbow-wrist)."""
    return _joint_pose(
        [("left_shoulder", "left_elbow", "left_wrist"), ("right_shoulder", "right_elbow", "right_wrist")],
        [(200.0, 300.0), (400.0, 300.0)],
        angle,
        **kwargs,
    )


def knee_pose(angle: float, **kwargs) -> Pose:
    """Both knees bent to `angle` (hip-knee-ankle)."""
    return _joint_pose(
        [("left_hip", "left_knee", "left_ankle"), ("right_hip", "right_knee", "right_ankle")],
        [(250.0, 450.0), (350.0, 450.0)],
        angle,
        **kwargs,
    )


def body_line_pose(angle: float, **kwargs) -> Pose:
    """Shoulder-hip-ankle angle of `angle` on both sides."""
    return _joint_pose(
        [("left_shoulder", "left_hip", "left_ankle"), ("right_shoulder", "right_hip", "right_ankle")],
        [(250.0, 350.0), (350.0, 350.0)],
        angle,
        **kwargs,
    )


def spread_pose(wrist_ratio: float, ankle_ratio: float, **kwargs) -> Pose:
    """
    Wrist spread of `wrist_ratio` shoulder widths and ankle spread of
    `ankle_ratio` hip widths (shoulders 100px apart, hips 60px apart).
    """
    half_wrists = wrist_ratio * 100.0 / 2
    half_ankles = ankle_ratio * 60.0 / 2
    return make_pose({
        "left_shoulder": (250, 200),
        "right_shoulder": (350, 200),
        "left_wrist": (300 - half_wrists, 300),
        "right_wrist": (300 + half_wrists, 300),
        "left_hip": (270, 400),
        "right_hip": (330, 400),
        "left_ankle": (300 - half_ankles, 600),
        "right_ankle": (300 + half_ankles, 600),
    }, **kwargs)


def wrist_height_pose(offset: float, **kwargs) -> Pose:
    """Both wrists `offset` px below their shoulders (negative = above)."""
    return make_pose({
        "left_shoulder": (250, 200),
        "right_shoulder": (350, 200),
        "left_wrist": (200, 200 + offset),
        "right_wrist": (400, 200 + offset),
    }, **kwargs)
