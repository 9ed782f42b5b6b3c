"""
RepTrack Tracker Service - Session Registry

Keeps one frame driver per live tracking session, plus the session's own
server-side pose detector when it streams camera frames.
"""

import logging
import uuid
from typing import Callable, Dict, Optional, Union

from shared.storage import WorkoutRecorder, get_history_store
from .detectors import ExerciseType
from .frame_driver import FrameDriver
from .pose_source import MediaPipePoseDetector, PoseSource, QueuePoseSource

logger = logging.getLogger(__name__)


class TrackerSessionManager:
    """
    Creates, looks up and tears down tracking sessions.

    Sessions default to a client-fed QueuePoseSource and the local workout
    history as recorder. MediaPipe tracks landmarks across calls, so a
    detector is never shared between sessions.
    """

    def __init__(
        self,
        recorder: Optional[WorkoutRecorder] = None,
        detector_factory: Callable[[], MediaPipePoseDetector] = MediaPipePoseDetector,
    ):
        self.recorder = recorder
        self.detector_factory = detector_factory
        self.active_sessions: Dict[str, FrameDriver] = {}
        self.frame_detectors: Dict[str, MediaPipePoseDetector] = {}

    def create_session(
        self,
        user_id: str,
        exercise_type: Union[ExerciseType, str] = ExerciseType.PUSHUP,
        pose_source: Optional[PoseSource] = None,
        target_fps: float = 0,
    ) -> FrameDriver:
        """
        Create a new tracking session.

        Args:
            user_id: User ID
            exercise_type: Initially selected exercise
            pose_source: Pose source (client-fed queue if None)
            target_fps: Loop pacing (0 = driven by the source)

        Raises:
            ValueError: for an unknown exercise type
        """
        exercise_type = ExerciseType(exercise_type)
        session_id = str(uuid.uuid4())[:8]

        driver = FrameDriver(
            pose_source=pose_source or QueuePoseSource(),
            exercise_type=exercise_type,
            recorder=self.recorder or get_history_store(),
            user_id=user_id,
            session_id=session_id,
            target_fps=target_fps,
        )
        self.active_sessions[session_id] = driver

        logger.info(f"🆕 Session {session_id} created for {user_id} ({exercise_type.value})")
        return driver

    def get_session(self, session_id: str) -> Optional[FrameDriver]:
        return self.active_sessions.get(session_id)

    def get_frame_detector(self, session_id: str) -> MediaPipePoseDetector:
        """
        Get or load the session's server-side pose detector.

        Raises:
            KeyError: for an unknown session
            PoseSourceError: if the pose model cannot be loaded
        """
        if session_id not in self.active_sessions:
            raise KeyError(session_id)

        detector = self.frame_detectors.get(session_id)
        if detector is None:
            detector = self.detector_factory()
            self.frame_detectors[session_id] = detector
            logger.info(f"🧠 Session {session_id}: server-side pose detector loaded")
        return detector

    async def close_session(self, session_id: str) -> bool:
        """Stop a session's loop, release its pose source and detector, and forget it."""
        driver = self.active_sessions.pop(session_id, None)
        if driver is None:
            return False

        await driver.stop()

        detector = self.frame_detectors.pop(session_id, None)
        if detector is not None:
            try:
                detector.close()
            except Exception as e:
                logger.warning(f"Session {session_id}: error releasing pose detector: {e}")

        logger.info(f"🧹 Session {session_id} closed")
        return True

    async def close_all(self):
        for session_id in list(self.active_sessions.keys()):
            await self.close_session(session_id)


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE-LEVEL SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_manager_instance: Optional[TrackerSessionManager] = None


def get_session_manager() -> TrackerSessionManager:
    """Get or create the global session manager instance."""
    global _manager_instance
    if _manager_instance is None:
        _manager_instance = TrackerSessionManager()
    return _manager_instance
