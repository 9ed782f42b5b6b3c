"""
RepTrack Workout History Storage

Local JSON workout recorder. Each user's completed workouts are kept in one
file, most recent first.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from core.config import settings

# Configure logging
logger = logging.getLogger(__name__)


class WorkoutRecorder(Protocol):
    """Receives completed workout summaries."""

    def record(self, user_id: str, summary: Dict[str, Any]) -> None:
        ...


class LocalWorkoutHistory:
    """
    Local file workout history.

    Stores one JSON list per user under the history directory.
    """

    def __init__(self, base_path: Optional[str] = None):
        """
        Initialize local workout history.

        Args:
            base_path: Directory for history files. Defaults to settings.HISTORY_PATH
        """
        self.base_path = Path(base_path or settings.HISTORY_PATH)
        self.base_path.mkdir(parents=True, exist_ok=True)

        logger.info(f"📁 LocalWorkoutHistory initialized at: {self.base_path}")

    def _history_file(self, user_id: str) -> Path:
        safe_id = "".join(ch for ch in user_id if ch.isalnum() or ch in "-_")
        if not safe_id:
            raise ValueError(f"Invalid user id: {user_id!r}")
        return self.base_path / f"workoutHistory_{safe_id}.json"

    def get_history(self, user_id: str) -> List[Dict[str, Any]]:
        """Get a user's workouts, most recent first."""
        path = self._history_file(user_id)
        if not path.exists():
            return []

        try:
            with open(path, "r", encoding="utf-8") as f:
                history = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"❌ Failed to read history for {user_id}: {e}")
            return []

        return history if isinstance(history, list) else []

    def record(self, user_id: str, summary: Dict[str, Any]) -> None:
        """Prepend a workout summary to the user's history."""
        history = [summary, *self.get_history(user_id)]
        path = self._history_file(user_id)

        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(history, f, indent=2)
        tmp_path.replace(path)

        logger.info(f"✅ Recorded workout for {user_id} ({len(history)} total)")

    def clear_history(self, user_id: str) -> bool:
        """Delete a user's history. Returns True if there was one."""
        path = self._history_file(user_id)
        if path.exists():
            path.unlink()
            logger.info(f"🗑️ Cleared workout history for {user_id}")
            return True
        return False


# Global instance
_history: Optional[LocalWorkoutHistory] = None


def get_history_store() -> LocalWorkoutHistory:
    """Get or create the global workout history instance."""
    global _history
    if _history is None:
        _history = LocalWorkoutHistory()
    return _history
