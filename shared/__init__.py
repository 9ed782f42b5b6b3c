"""
RepTrack Shared Module

Common utilities used across all services.
"""

from .storage import LocalWorkoutHistory, WorkoutRecorder, get_history_store

__all__ = [
    'LocalWorkoutHistory',
    'WorkoutRecorder',
    'get_history_store',
]
