import asyncio

import pytest

from shared.storage import LocalWorkoutHistory
from tracker_service.models import PoseSourceError, TrackerSessionManager


class FakeFrameDetector:
    def __init__(self):
        self.closed = False

    def detect_pose(self, image):
        return None

    def close(self):
        self.closed = True


def make_manager(tmp_path, factory=FakeFrameDetector):
    return TrackerSessionManager(recorder=LocalWorkoutHistory(str(tmp_path)), detector_factory=factory)


def test_each_session_gets_its_own_detector(tmp_path):
    async def scenario():
        manager = make_manager(tmp_path)
        a = manager.create_session("alice")
        b = manager.create_session("bob")
        return (
            manager.get_frame_detector(a.session_id),
            manager.get_frame_detector(a.session_id),
            manager.get_frame_detector(b.session_id),
        )

    first, again, other = asyncio.run(scenario())
    assert first is again
    assert first is not other


def test_detector_is_loaded_lazily(tmp_path):
    created = []

    def factory():
        created.append(FakeFrameDetector())
        return created[-1]

    async def scenario():
        manager = make_manager(tmp_path, factory)
        manager.create_session("alice")
        return manager

    manager = asyncio.run(scenario())
    assert created == []
    assert manager.frame_detectors == {}


def test_closing_session_releases_detector(tmp_path):
    async def scenario():
        manager = make_manager(tmp_path)
        driver = manager.create_session("alice")
        detector = manager.get_frame_detector(driver.session_id)
        closed = await manager.close_session(driver.session_id)
        return manager, detector, closed

    manager, detector, closed = asyncio.run(scenario())
    assert closed is True
    assert detector.closed
    assert manager.frame_detectors == {}
    assert manager.active_sessions == {}


def test_close_all_releases_every_detector(tmp_path):
    async def scenario():
        manager = make_manager(tmp_path)
        detectors = [
            manager.get_frame_detector(manager.create_session(user).session_id)
            for user in ("alice", "bob")
        ]
        await manager.close_all()
        return detectors

    assert all(d.closed for d in asyncio.run(scenario()))


def test_unknown_session_has_no_detector(tmp_path):
    manager = make_manager(tmp_path)
    with pytest.raises(KeyError):
        manager.get_frame_detector("nope")


def test_model_failure_is_not_cached(tmp_path):
    attempts = []

    def failing_factory():
        attempts.append(1)
        raise PoseSourceError("model missing")

    async def scenario():
        manager = make_manager(tmp_path, failing_factory)
        session_id = manager.create_session("alice").session_id
        for _ in range(2):
            with pytest.raises(PoseSourceError):
                manager.get_frame_detector(session_id)
        return manager

    manager = asyncio.run(scenario())
    assert len(attempts) == 2
    assert manager.frame_detectors == {}
