"""
RepTrack Tracker Service - Pose Sources

Where the frame driver gets its poses from:
- QueuePoseSource: poses pushed by a client (browser-side MoveNet keypoints
  or frames decoded server-side)
- CameraPoseSource: local camera read with OpenCV, poses from MediaPipe

Detection failure is never an error here: a frame with no person, or a frame
the model chokes on, yields None. Only failing to open the camera or load the
model raises PoseSourceError.
"""

import asyncio
import logging
import threading
from typing import Dict, Optional, Protocol, runtime_checkable

import numpy as np

from core.config import settings
from .geometry import Keypoint, Pose

logger = logging.getLogger(__name__)


class PoseSourceError(RuntimeError):
    """Camera or pose model could not be initialized."""


@runtime_checkable
class PoseSource(Protocol):
    """Yields at most one pose per call, or None if no person was detected."""

    async def next_pose(self) -> Optional[Pose]:
        ...

    async def close(self) -> None:
        ...


# MediaPipe Pose landmark index for each keypoint name
MEDIAPIPE_LANDMARKS: Dict[str, int] = {
    "nose": 0,
    "left_eye": 2,
    "right_eye": 5,
    "left_ear": 7,
    "right_ear": 8,
    "left_shoulder": 11,
    "right_shoulder": 12,
    "left_elbow": 13,
    "right_elbow": 14,
    "left_wrist": 15,
    "right_wrist": 16,
    "left_hip": 23,
    "right_hip": 24,
    "left_knee": 25,
    "right_knee": 26,
    "left_ankle": 27,
    "right_ankle": 28,
}


# ═══════════════════════════════════════════════════════════════════════════════
# CLIENT-FED SOURCE
# ═══════════════════════════════════════════════════════════════════════════════

class QueuePoseSource:
    """
    Pose source fed by an external producer.

    The queue is bounded; when the consumer falls behind the oldest pose is
    dropped so the driver always works on recent frames.
    """

    def __init__(self, maxsize: Optional[int] = None):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or settings.POSE_QUEUE_SIZE)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, pose: Optional[Pose]) -> bool:
        """Queue a pose (None for "no person"). Returns False once closed."""
        if self._closed:
            return False

        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(pose)
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def clear(self) -> int:
        """Discard queued poses. Returns how many were dropped."""
        cleared = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            cleared += 1
        return cleared

    async def next_pose(self) -> Optional[Pose]:
        return await self._queue.get()

    async def close(self) -> None:
        self._closed = True
        self.clear()


# ═══════════════════════════════════════════════════════════════════════════════
# MEDIAPIPE
# ═══════════════════════════════════════════════════════════════════════════════

class MediaPipePoseDetector:
    """
    MediaPipe Pose wrapped to produce named keypoints in pixel coordinates.

    The graph is stateful across frames; calls are serialized and one
    instance serves a single video stream.
    """

    def __init__(
        self,
        model_complexity: Optional[int] = None,
        min_detection_confidence: Optional[float] = None,
        min_tracking_confidence: Optional[float] = None,
    ):
        try:
            import mediapipe as mp

            self.mp_pose = mp.solutions.pose
            self.pose_detector = self.mp_pose.Pose(
                static_image_mode=False,
                model_complexity=model_complexity if model_complexity is not None else settings.POSE_MODEL_COMPLEXITY,
                enable_segmentation=False,
                min_detection_confidence=min_detection_confidence or settings.POSE_MIN_DETECTION_CONFIDENCE,
                min_tracking_confidence=min_tracking_confidence or settings.POSE_MIN_TRACKING_CONFIDENCE,
            )
        except Exception as e:
            raise PoseSourceError(f"Failed to initialize MediaPipe pose model: {e}") from e

        self._lock = threading.Lock()

        logger.info("✅ MediaPipe pose detector initialized")

    def detect_pose(self, image: np.ndarray) -> Optional[Pose]:
        """
        Detect a single pose in a BGR image.

        Returns:
            Pose with the 17 named keypoints, or None if detection failed
        """
        import cv2

        try:
            height, width = image.shape[:2]
            rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
            with self._lock:
                if self.pose_detector is None:
                    return None
                results = self.pose_detector.process(rgb)
        except Exception as e:
            logger.warning(f"Pose detection error: {e}")
            return None

        if not results.pose_landmarks:
            return None

        landmarks = results.pose_landmarks.landmark
        keypoints = [
            Keypoint(
                x=landmarks[idx].x * width,
                y=landmarks[idx].y * height,
                score=float(landmarks[idx].visibility),
                name=name,
            )
            for name, idx in MEDIAPIPE_LANDMARKS.items()
        ]

        return Pose(
            keypoints=keypoints,
            score=float(np.mean([kp.score for kp in keypoints])),
        )

    def close(self):
        """Release the model."""
        with self._lock:
            if self.pose_detector is not None:
                self.pose_detector.close()
                self.pose_detector = None


class CameraPoseSource:
    """Reads frames from a local camera and runs MediaPipe on each."""

    def __init__(
        self,
        camera_index: Optional[int] = None,
        detector: Optional[MediaPipePoseDetector] = None,
    ):
        self.camera_index = settings.CAMERA_INDEX if camera_index is None else camera_index
        self._detector = detector
        self._cap = None
        self.last_frame: Optional[np.ndarray] = None

    def open(self) -> "CameraPoseSource":
        """
        Open the camera and load the model.

        Raises:
            PoseSourceError: if either cannot be initialized
        """
        import cv2

        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise PoseSourceError(f"Could not access camera {self.camera_index}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, settings.CAMERA_WIDTH)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, settings.CAMERA_HEIGHT)

        if self._detector is None:
            try:
                self._detector = MediaPipePoseDetector()
            except PoseSourceError:
                cap.release()
                raise

        self._cap = cap
        logger.info(f"📷 Camera {self.camera_index} opened")
        return self

    async def next_pose(self) -> Optional[Pose]:
        if self._cap is None:
            return None

        ret, frame = await asyncio.to_thread(self._cap.read)
        if not ret:
            logger.debug("Camera returned no frame")
            return None

        self.last_frame = frame
        return await asyncio.to_thread(self._detector.detect_pose, frame)

    async def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        if self._detector is not None:
            self._detector.close()
            self._detector = None
        logger.info(f"📷 Camera {self.camera_index} released")
