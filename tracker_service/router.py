"""
RepTrack Tracker Service Router

Endpoints for live exercise tracking sessions and workout history.
Poses arrive over a WebSocket, either as keypoints computed in the browser
(MoveNet) or as JPEG frames run through MediaPipe on the server.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import cv2
import numpy as np
from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from shared.storage import get_history_store
from .models import (
    ExerciseType,
    FrameDriver,
    KEYPOINT_NAMES,
    Pose,
    PoseSourceError,
    QueuePoseSource,
    RENDER_SCORE_THRESHOLD,
    SKELETON_CONNECTIONS,
    TrackerState,
    TrackerStateError,
    get_session_manager,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============= Pydantic Models =============

class CreateSessionRequest(BaseModel):
    user_id: str
    exercise_type: str = ExerciseType.PUSHUP.value


class SelectExerciseRequest(BaseModel):
    exercise_type: str


class PoseFrameRequest(BaseModel):
    pose: Optional[Dict[str, Any]] = None


# ============= Helpers =============

def _get_driver(session_id: str) -> FrameDriver:
    driver = get_session_manager().get_session(session_id)
    if driver is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return driver


def _parse_exercise_type(value: str) -> ExerciseType:
    try:
        return ExerciseType(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid exercise type. Valid types: {[e.value for e in ExerciseType]}"
        )


def _apply(driver: FrameDriver, action, *args) -> Dict[str, Any]:
    """Run a lifecycle action, mapping illegal transitions to 409."""
    try:
        action(*args)
    except TrackerStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return driver.snapshot(include_pose=False)


def _frame_message(driver: FrameDriver) -> Dict[str, Any]:
    return {"type": "frame_result", **driver.snapshot()}


# ============= REST Endpoints =============

@router.get("/exercises")
async def get_exercises():
    """Supported exercises plus the skeleton layout for drawing poses."""
    return {
        "exercises": [
            {"id": e.value, "name": e.display_name, "summary_key": e.summary_key}
            for e in ExerciseType
        ],
        "keypoints": list(KEYPOINT_NAMES),
        "skeleton": [list(edge) for edge in SKELETON_CONNECTIONS],
        "render_score_threshold": RENDER_SCORE_THRESHOLD,
    }


@router.post("/session")
async def create_session(request: CreateSessionRequest):
    """
    Create a tracking session.

    Returns a session ID for use with the WebSocket stream.
    """
    exercise_type = _parse_exercise_type(request.exercise_type)
    driver = get_session_manager().create_session(request.user_id, exercise_type)

    return {
        "status": "created",
        "session_id": driver.session_id,
        "user_id": request.user_id,
        "exercise_type": exercise_type.value,
        "websocket_url": f"/api/tracker/ws/session/{driver.session_id}"
    }


@router.get("/session/{session_id}")
async def get_session_status(session_id: str):
    return _get_driver(session_id).snapshot()


@router.post("/session/{session_id}/start")
async def start_session(session_id: str):
    driver = _get_driver(session_id)
    return _apply(driver, driver.start)


@router.post("/session/{session_id}/pause")
async def pause_session(session_id: str):
    driver = _get_driver(session_id)
    return _apply(driver, driver.pause)


@router.post("/session/{session_id}/resume")
async def resume_session(session_id: str):
    driver = _get_driver(session_id)
    return _apply(driver, driver.resume)


@router.post("/session/{session_id}/reset")
async def reset_exercise(session_id: str):
    driver = _get_driver(session_id)
    return _apply(driver, driver.reset)


@router.post("/session/{session_id}/exercise")
async def select_exercise(session_id: str, request: SelectExerciseRequest):
    driver = _get_driver(session_id)
    exercise_type = _parse_exercise_type(request.exercise_type)
    return _apply(driver, driver.select_exercise, exercise_type)


@router.post("/session/{session_id}/complete")
async def complete_session(session_id: str):
    """Complete the workout and record its summary."""
    driver = _get_driver(session_id)
    try:
        summary = driver.complete()
    except TrackerStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "status": "completed",
        "session_id": session_id,
        "summary": summary.to_dict()
    }


@router.post("/session/{session_id}/new-workout")
async def new_workout(session_id: str):
    driver = _get_driver(session_id)
    return _apply(driver, driver.start_new_workout)


@router.post("/session/{session_id}/pose")
async def submit_pose(session_id: str, request: PoseFrameRequest):
    """
    Process one client-side pose (null when no person was detected).

    Without a live WebSocket loop the frame is processed immediately.
    """
    driver = _get_driver(session_id)
    if not isinstance(driver.pose_source, QueuePoseSource):
        raise HTTPException(status_code=409, detail="Session does not accept client poses")

    try:
        pose = Pose.from_dict(request.pose) if request.pose is not None else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if driver.is_running:
        driver.pose_source.submit(pose)
    else:
        if driver.state != TrackerState.ACTIVE:
            raise HTTPException(status_code=409, detail=f"Workout is {driver.state.value}")
        driver.pose_source.submit(pose)
        await driver.tick()

    return driver.snapshot(include_pose=False)


@router.delete("/session/{session_id}")
async def close_session(session_id: str):
    if not await get_session_manager().close_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "closed", "session_id": session_id}


@router.get("/history/{user_id}")
async def get_history(user_id: str):
    """Completed workouts for a user, most recent first."""
    try:
        workouts = get_history_store().get_history(user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"user_id": user_id, "workouts": workouts, "total": len(workouts)}


# ============= WebSocket Endpoints =============

async def _handle_control(driver: FrameDriver, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply a control message. Returns a reply message, if any."""
    msg_type = message.get("type")

    if msg_type == "start":
        driver.start()
    elif msg_type == "pause":
        driver.pause()
    elif msg_type == "resume":
        driver.resume()
    elif msg_type == "toggle":
        driver.toggle()
    elif msg_type == "reset":
        driver.reset()
    elif msg_type == "select_exercise":
        exercise_type = message.get("exercise_type")
        if not exercise_type:
            return {"type": "error", "message": "exercise_type required"}
        driver.select_exercise(exercise_type)
    elif msg_type == "new_workout":
        driver.start_new_workout()
    elif msg_type == "complete":
        summary = driver.complete()
        return {"type": "workout_completed", "summary": summary.to_dict()}
    else:
        return {"type": "error", "message": f"Unknown message type: {msg_type}"}

    return {"type": "status", **driver.snapshot(include_pose=False)}


async def _decode_frame(session_id: str, data: bytes) -> Optional[Pose]:
    """Decode a JPEG frame and run the session's own pose detector."""
    frame = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        return None

    detector = get_session_manager().get_frame_detector(session_id)
    return await asyncio.to_thread(detector.detect_pose, frame)


@router.websocket("/ws/session/{session_id}")
async def tracker_stream(websocket: WebSocket, session_id: str):
    """
    Live tracking stream.

    Client -> server:
    - {"type": "pose", "pose": {...} | null}
    - {"type": "start" | "pause" | "resume" | "toggle" | "reset" | "complete" | "new_workout"}
    - {"type": "select_exercise", "exercise_type": "squat"}
    - binary JPEG frames

    Server -> client: "frame_result" after every processed frame, "status"
    after control messages, "workout_completed", "error".
    """
    await websocket.accept()

    driver = get_session_manager().get_session(session_id)
    if driver is None or not isinstance(driver.pose_source, QueuePoseSource):
        await websocket.send_json({
            "type": "error",
            "message": f"Session {session_id} not found"
        })
        await websocket.close()
        return

    source: QueuePoseSource = driver.pose_source

    async def publish(d: FrameDriver):
        await websocket.send_json(_frame_message(d))

    driver.subscribe(publish)
    driver.start_loop()

    try:
        await websocket.send_json({"type": "connected", **driver.snapshot(include_pose=False)})

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            if message.get("bytes") is not None:
                try:
                    pose = await _decode_frame(session_id, message["bytes"])
                except PoseSourceError as e:
                    logger.error(f"Session {session_id}: pose model unavailable: {e}")
                    await websocket.send_json({
                        "type": "error",
                        "code": "pose_model_unavailable",
                        "message": "Pose detection could not start. Please retry."
                    })
                    continue
                except KeyError:
                    await websocket.send_json({"type": "error", "message": f"Session {session_id} was closed"})
                    break
                source.submit(pose)
                continue

            try:
                payload = json.loads(message.get("text") or "")
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(payload, dict):
                await websocket.send_json({"type": "error", "message": "Message must be an object"})
                continue

            if payload.get("type") == "pose":
                try:
                    raw = payload.get("pose")
                    source.submit(Pose.from_dict(raw) if raw is not None else None)
                except ValueError as e:
                    await websocket.send_json({"type": "error", "message": str(e)})
                continue

            try:
                reply = await _handle_control(driver, payload)
            except (TrackerStateError, ValueError) as e:
                reply = {"type": "error", "message": str(e)}
            if reply is not None:
                await websocket.send_json(reply)

    except WebSocketDisconnect:
        logger.info(f"Session {session_id} disconnected")
    finally:
        driver.unsubscribe(publish)
        await driver.stop_loop()
        if driver.state == TrackerState.ACTIVE:
            driver.pause()
