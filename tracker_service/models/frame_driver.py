"""
RepTrack Tracker Service - Frame Driver

Pulls poses from a pose source one frame at a time, runs the active
exercise detector and publishes the resulting state. Owns the workout
lifecycle: idle -> active <-> paused -> completed.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from core.config import settings
from shared.storage import WorkoutRecorder
from shared.utils import get_now
from .detectors import ExerciseDetector, ExerciseType, get_detector
from .exercise_state import ExerciseState, init_exercise_state
from .geometry import Pose
from .pose_source import PoseSource, QueuePoseSource

logger = logging.getLogger(__name__)


class TrackerState(Enum):
    """Workout tracking states."""
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class TrackerStateError(ValueError):
    """Lifecycle action not allowed in the current state."""


@dataclass
class WorkoutSummary:
    """Completed workout as handed to the workout recorder."""
    date: str
    duration: int
    exercises: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        exercise_type: ExerciseType,
        count: int,
        duration: int,
        date: Optional[str] = None,
    ) -> "WorkoutSummary":
        # Only the exercise active at completion carries a count
        exercises = {t.summary_key: 0 for t in ExerciseType}
        exercises[exercise_type.summary_key] = count
        return cls(
            date=date or get_now().isoformat(),
            duration=duration,
            exercises=exercises,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "duration": self.duration,
            "exercises": dict(self.exercises),
        }


FrameCallback = Callable[["FrameDriver"], Any]


class FrameDriver:
    """
    Single-stream frame loop for one tracking session.

    One tick is exactly one pose fetch and one detector call. Ticks never
    overlap. The exercise state is only ever replaced as a whole, so readers
    (renderer, UI, duration display) can read it at any time without locking.
    """

    def __init__(
        self,
        pose_source: PoseSource,
        exercise_type: Union[ExerciseType, str] = ExerciseType.PUSHUP,
        recorder: Optional[WorkoutRecorder] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        target_fps: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize frame driver.

        Args:
            pose_source: Where poses come from
            exercise_type: Initially selected exercise
            recorder: Receives the summary on completion (optional)
            user_id: Owner of the workout, used as the recorder key
            session_id: Identifier used in logs and snapshots
            target_fps: Loop pacing; 0 means "as fast as the source yields"
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.pose_source = pose_source
        self.recorder = recorder
        self.user_id = user_id
        self.session_id = session_id
        self.target_fps = settings.TARGET_FPS if target_fps is None else target_fps
        self._clock = clock

        self.exercise_type = ExerciseType(exercise_type)
        self._detector: ExerciseDetector = get_detector(self.exercise_type)
        self.exercise_state: ExerciseState = init_exercise_state()
        self.latest_pose: Optional[Pose] = None

        self.state = TrackerState.IDLE
        self.start_time: Optional[datetime] = None
        self._elapsed = 0.0
        self._active_since: Optional[float] = None
        self.frames_processed = 0
        # Bumped whenever processing halts; a fetch spanning a bump is stale
        self._epoch = 0
        self.last_summary: Optional[WorkoutSummary] = None

        self._subscribers: List[FrameCallback] = []
        self._tick_lock = asyncio.Lock()
        self._active = asyncio.Event()
        self._stopped = False
        self._task: Optional[asyncio.Task] = None

    # ═══════════════════════════════════════════════════════════════════════════
    # TIMING
    # ═══════════════════════════════════════════════════════════════════════════

    @property
    def elapsed_seconds(self) -> int:
        """Whole seconds spent active (paused time is not counted)."""
        elapsed = self._elapsed
        if self._active_since is not None:
            elapsed += self._clock() - self._active_since
        return int(elapsed)

    def _stop_clock(self):
        if self._active_since is not None:
            self._elapsed += self._clock() - self._active_since
            self._active_since = None

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    def start(self):
        """Start (or resume) tracking. The workout start time is recorded once."""
        if self.state == TrackerState.COMPLETED:
            raise TrackerStateError("Workout already completed; start a new workout first")
        if self.state == TrackerState.ACTIVE:
            return

        if self.start_time is None:
            self.start_time = get_now()

        # Poses queued while not active are never processed
        if isinstance(self.pose_source, QueuePoseSource):
            dropped = self.pose_source.clear()
            if dropped:
                logger.debug(f"Session {self.session_id}: discarded {dropped} queued poses")

        self.state = TrackerState.ACTIVE
        self._active_since = self._clock()
        self._active.set()
        logger.info(f"▶️ Session {self.session_id}: tracking {self.exercise_type.value}")

    def pause(self):
        """Pause tracking. Takes effect before the next detector call."""
        if self.state == TrackerState.PAUSED:
            return
        if self.state != TrackerState.ACTIVE:
            raise TrackerStateError(f"Cannot pause a {self.state.value} workout")

        self.state = TrackerState.PAUSED
        self._active.clear()
        self._epoch += 1
        self._stop_clock()
        logger.info(f"⏸️ Session {self.session_id}: paused at {self.elapsed_seconds}s")

    def resume(self):
        if self.state != TrackerState.PAUSED:
            raise TrackerStateError(f"Cannot resume a {self.state.value} workout")
        self.start()

    def toggle(self):
        """Start/resume when not active, pause when active."""
        if self.state == TrackerState.ACTIVE:
            self.pause()
        else:
            self.start()

    def select_exercise(self, exercise_type: Union[ExerciseType, str]):
        """
        Switch exercise. Always discards the current exercise state; counts are
        never carried over between exercise types.
        """
        if self.state == TrackerState.COMPLETED:
            raise TrackerStateError("Cannot change exercise after the workout is completed")

        self.exercise_type = ExerciseType(exercise_type)
        self._detector = get_detector(self.exercise_type)
        self.exercise_state = init_exercise_state()
        logger.info(f"🔀 Session {self.session_id}: switched to {self.exercise_type.value}")

    def reset(self):
        """Reset the current exercise state. Workout time is untouched."""
        self.exercise_state = init_exercise_state()
        logger.info(f"🔄 Session {self.session_id}: {self.exercise_type.value} reset")

    def complete(self, user_id: Optional[str] = None) -> WorkoutSummary:
        """
        Finish the workout and hand the summary to the recorder.

        Returns:
            WorkoutSummary with the active exercise's count
        """
        if self.state not in (TrackerState.ACTIVE, TrackerState.PAUSED):
            raise TrackerStateError(f"Cannot complete a {self.state.value} workout")

        self._stop_clock()
        self.state = TrackerState.COMPLETED
        self._active.clear()
        self._epoch += 1

        summary = WorkoutSummary.build(
            exercise_type=self.exercise_type,
            count=self.exercise_state.count,
            duration=self.elapsed_seconds,
        )
        self.last_summary = summary

        user_id = user_id or self.user_id
        if self.recorder is not None and user_id:
            try:
                self.recorder.record(user_id, summary.to_dict())
            except OSError as e:
                logger.error(f"❌ Session {self.session_id}: failed to record workout: {e}")

        logger.info(
            f"🏁 Session {self.session_id}: completed "
            f"{self.exercise_state.count} {self.exercise_type.value} in {summary.duration}s"
        )
        return summary

    def start_new_workout(self):
        """Back to idle with a fresh state and zero elapsed time."""
        self._active.clear()
        self._epoch += 1
        self.state = TrackerState.IDLE
        self.start_time = None
        self._elapsed = 0.0
        self._active_since = None
        self.exercise_state = init_exercise_state()
        self.latest_pose = None
        self.last_summary = None

    # ═══════════════════════════════════════════════════════════════════════════
    # FRAME PROCESSING
    # ═══════════════════════════════════════════════════════════════════════════

    def subscribe(self, callback: FrameCallback):
        """Register a reader called (sync or async) after every published frame."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: FrameCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def tick(self) -> Optional[ExerciseState]:
        """
        Process one frame.

        Returns:
            The published state, or None if not active (including a pause that
            landed while the pose was being fetched; that pose is discarded)
        """
        if self.state != TrackerState.ACTIVE:
            return None

        async with self._tick_lock:
            epoch = self._epoch
            pose = await self.pose_source.next_pose()

            if self.state != TrackerState.ACTIVE or epoch != self._epoch:
                return None

            new_state = self._detector.detect(pose, self.exercise_state)
            if new_state.count != self.exercise_state.count:
                logger.debug(f"Session {self.session_id}: {self.exercise_type.value} count {new_state.count}")

            self.exercise_state = new_state
            self.latest_pose = pose
            self.frames_processed += 1

            await self._notify()
            return new_state

    async def _notify(self):
        for callback in list(self._subscribers):
            try:
                result = callback(self)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Session {self.session_id}: frame subscriber failed")

    async def run(self):
        """Tick until stopped, waiting while not active."""
        interval = 1.0 / self.target_fps if self.target_fps else 0.0

        while not self._stopped:
            if self.state != TrackerState.ACTIVE:
                await self._active.wait()
                continue

            started = self._clock()
            await self.tick()

            # sleep(0) still yields when the source never blocks
            remaining = interval - (self._clock() - started)
            await asyncio.sleep(max(remaining, 0.0))

    def start_loop(self) -> asyncio.Task:
        """Run the frame loop as a background task."""
        if self._task is None or self._task.done():
            self._stopped = False
            self._task = asyncio.create_task(self.run())
        return self._task

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop_loop(self):
        """Cancel the background frame loop, keeping the pose source open."""
        self._stopped = True
        self._active.set()

        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Session {self.session_id}: frame loop failed: {e}")

        if self.state != TrackerState.ACTIVE:
            self._active.clear()

    async def stop(self):
        """Halt frame fetching and release the pose source. Never raises."""
        await self.stop_loop()

        try:
            await self.pose_source.close()
        except Exception as e:
            logger.warning(f"Session {self.session_id}: error releasing pose source: {e}")

        if self.state == TrackerState.ACTIVE:
            self.pause()

    # ═══════════════════════════════════════════════════════════════════════════
    # READ-ONLY VIEW
    # ═══════════════════════════════════════════════════════════════════════════

    def snapshot(self, include_pose: bool = True) -> Dict[str, Any]:
        """Convert current tracking status to JSON-serializable dict."""
        data = {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "exercise_type": self.exercise_type.value,
            "exercise_state": self.exercise_state.to_dict(),
            "elapsed_seconds": self.elapsed_seconds,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "frames_processed": self.frames_processed,
        }
        if include_pose:
            data["pose"] = self.latest_pose.to_dict() if self.latest_pose else None
        return data
