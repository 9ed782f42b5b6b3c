import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

import shared.storage
import tracker_service.models.tracker_session as tracker_session
from main import app
from shared.storage import LocalWorkoutHistory
from tracker_service.models import TrackerSessionManager
from pose_factory import elbow_pose, knee_pose

API = "/api/tracker"


class StubFrameDetector:
    """Stands in for MediaPipe: every decoded frame shows a straight-arm pose."""

    def __init__(self):
        self.frames = 0
        self.closed = False

    def detect_pose(self, image):
        self.frames += 1
        return elbow_pose(170)

    def close(self):
        self.closed = True


def jpeg_frame():
    ok, buffer = cv2.imencode(".jpg", np.zeros((32, 32, 3), dtype=np.uint8))
    assert ok
    return buffer.tobytes()


@pytest.fixture
def client(tmp_path, monkeypatch):
    history = LocalWorkoutHistory(str(tmp_path))
    manager = TrackerSessionManager(recorder=history, detector_factory=StubFrameDetector)
    monkeypatch.setattr(tracker_session, "_manager_instance", manager)
    monkeypatch.setattr(shared.storage, "_history", history)

    with TestClient(app) as test_client:
        yield test_client


def create_session(client, exercise_type="pushup", user_id="user-1"):
    response = client.post(f"{API}/session", json={"user_id": user_id, "exercise_type": exercise_type})
    assert response.status_code == 200
    return response.json()["session_id"]


def send_pose(client, session_id, pose):
    return client.post(f"{API}/session/{session_id}/pose", json={"pose": pose.to_dict()})


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_list_exercises(client):
    data = client.get(f"{API}/exercises").json()
    assert [e["id"] for e in data["exercises"]] == ["pushup", "squat", "jumpingJack", "plank", "armRaise"]
    assert len(data["keypoints"]) == 17
    assert data["render_score_threshold"] == 0.3


def test_full_workout_over_rest(client):
    session_id = create_session(client)

    assert client.post(f"{API}/session/{session_id}/start").json()["state"] == "active"
    for angle in (170, 80, 170):
        assert send_pose(client, session_id, elbow_pose(angle)).status_code == 200

    status = client.get(f"{API}/session/{session_id}").json()
    assert status["exercise_state"]["count"] == 1
    assert status["frames_processed"] == 3

    result = client.post(f"{API}/session/{session_id}/complete").json()
    assert result["summary"]["exercises"]["pushups"] == 1
    assert sum(result["summary"]["exercises"].values()) == 1

    history = client.get(f"{API}/history/user-1").json()
    assert history["total"] == 1
    assert history["workouts"][0]["exercises"]["pushups"] == 1


def test_pose_rejected_when_not_active(client):
    session_id = create_session(client)
    assert send_pose(client, session_id, elbow_pose(170)).status_code == 409


def test_missing_person_is_accepted(client):
    session_id = create_session(client)
    client.post(f"{API}/session/{session_id}/start")

    response = client.post(f"{API}/session/{session_id}/pose", json={"pose": None})
    assert response.status_code == 200
    assert response.json()["exercise_state"]["feedbackCategory"] == "reposition"


def test_malformed_pose(client):
    session_id = create_session(client)
    client.post(f"{API}/session/{session_id}/start")

    response = client.post(f"{API}/session/{session_id}/pose", json={"pose": {"keypoints": "nope"}})
    assert response.status_code == 400


def test_switching_exercise_resets_count(client):
    session_id = create_session(client)
    client.post(f"{API}/session/{session_id}/start")
    for angle in (170, 80, 170):
        send_pose(client, session_id, elbow_pose(angle))

    data = client.post(f"{API}/session/{session_id}/exercise", json={"exercise_type": "squat"}).json()
    assert data["exercise_type"] == "squat"
    assert data["exercise_state"]["count"] == 0


def test_invalid_exercise_type(client):
    response = client.post(f"{API}/session", json={"user_id": "user-1", "exercise_type": "burpee"})
    assert response.status_code == 400


def test_illegal_transition_is_conflict(client):
    session_id = create_session(client)
    assert client.post(f"{API}/session/{session_id}/pause").status_code == 409
    assert client.post(f"{API}/session/{session_id}/complete").status_code == 409


def test_unknown_session(client):
    assert client.get(f"{API}/session/nope").status_code == 404
    assert client.delete(f"{API}/session/nope").status_code == 404


def test_close_session(client):
    session_id = create_session(client)
    assert client.delete(f"{API}/session/{session_id}").json()["status"] == "closed"
    assert client.get(f"{API}/session/{session_id}").status_code == 404


def test_invalid_history_user(client):
    assert client.get(f"{API}/history/...").status_code == 400


def test_websocket_workout(client):
    session_id = create_session(client, exercise_type="squat", user_id="ws-user")

    with client.websocket_connect(f"{API}/ws/session/{session_id}") as ws:
        assert ws.receive_json()["type"] == "connected"

        ws.send_json({"type": "start"})
        assert ws.receive_json()["state"] == "active"

        counts = []
        for angle in (170, 100, 170):
            ws.send_json({"type": "pose", "pose": knee_pose(angle).to_dict()})
            message = ws.receive_json()
            assert message["type"] == "frame_result"
            counts.append(message["exercise_state"]["count"])
        assert counts == [0, 0, 1]

        ws.send_json({"type": "complete"})
        completed = ws.receive_json()
        assert completed["type"] == "workout_completed"
        assert completed["summary"]["exercises"]["squats"] == 1

    history = client.get(f"{API}/history/ws-user").json()
    assert history["workouts"][0]["exercises"]["squats"] == 1


def test_websocket_unknown_session(client):
    with client.websocket_connect(f"{API}/ws/session/nope") as ws:
        message = ws.receive_json()
        assert message["type"] == "error"


def test_websocket_bad_control(client):
    session_id = create_session(client)

    with client.websocket_connect(f"{API}/ws/session/{session_id}") as ws:
        ws.receive_json()
        ws.send_json({"type": "pause"})
        assert ws.receive_json()["type"] == "error"
        ws.send_json({"type": "jump"})
        assert "Unknown" in ws.receive_json()["message"]


def test_websocket_select_exercise_requires_type(client):
    session_id = create_session(client)

    with client.websocket_connect(f"{API}/ws/session/{session_id}") as ws:
        ws.receive_json()
        ws.send_json({"type": "select_exercise"})
        assert ws.receive_json() == {"type": "error", "message": "exercise_type required"}


def test_binary_frames_use_a_detector_per_session(client):
    sessions = [create_session(client, user_id=user) for user in ("alice", "bob")]

    for session_id in sessions:
        with client.websocket_connect(f"{API}/ws/session/{session_id}") as ws:
            ws.receive_json()
            ws.send_json({"type": "start"})
            ws.receive_json()

            ws.send_bytes(jpeg_frame())
            message = ws.receive_json()
            assert message["type"] == "frame_result"
            assert message["exercise_state"]["phase"] == "up"

    manager = tracker_session._manager_instance
    detectors = [manager.frame_detectors[session_id] for session_id in sessions]
    assert detectors[0] is not detectors[1]
    assert [d.frames for d in detectors] == [1, 1]

    client.delete(f"{API}/session/{sessions[0]}")
    assert detectors[0].closed
    assert not detectors[1].closed
