#!/usr/bin/env python3
"""
Live Exercise Tracker (local camera)
====================================
Counts reps from the local webcam with MediaPipe and draws the skeleton,
rep count and feedback on an OpenCV window.

Controls:
    space   pause / resume
    r       reset current exercise
    1-5     push-up, squat, jumping jack, plank, arm raise
    c       complete workout (saved to the local history when --user is set)
    n       start a new workout after completing
    q       quit

Usage:
    python scripts/track_camera.py --exercise squat --user alice
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import cv2

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.storage import get_history_store
from shared.utils import setup_logger
from tracker_service.models import (
    RENDER_SCORE_THRESHOLD,
    SKELETON_CONNECTIONS,
    CameraPoseSource,
    ExerciseType,
    FrameDriver,
    Pose,
    PoseSourceError,
    TrackerState,
    TrackerStateError,
)

logger = setup_logger("reptrack.camera")

EXERCISE_KEYS = {
    ord("1"): ExerciseType.PUSHUP,
    ord("2"): ExerciseType.SQUAT,
    ord("3"): ExerciseType.JUMPING_JACK,
    ord("4"): ExerciseType.PLANK,
    ord("5"): ExerciseType.ARM_RAISE,
}


def draw_pose(frame, pose: Pose):
    """Draw keypoints and skeleton edges above the render threshold."""
    points = {
        kp.name: (int(kp.x), int(kp.y))
        for kp in pose.keypoints
        if kp.score is not None and kp.score > RENDER_SCORE_THRESHOLD
    }

    for a, b in SKELETON_CONNECTIONS:
        if a in points and b in points:
            cv2.line(frame, points[a], points[b], (255, 0, 0), 2)

    for point in points.values():
        cv2.circle(frame, point, 4, (255, 255, 0), -1)


def draw_status(frame, driver: FrameDriver):
    state = driver.exercise_state
    minutes, seconds = divmod(driver.elapsed_seconds, 60)

    lines = [
        f"{driver.exercise_type.display_name}: {state.count}",
        f"Time: {minutes:02d}:{seconds:02d}  [{driver.state.value}]",
        state.feedback,
    ]
    for i, text in enumerate(lines):
        cv2.putText(frame, text, (10, 30 + i * 30), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 255, 0), 2)


def handle_key(key: int, driver: FrameDriver) -> bool:
    """Apply a keyboard command. Returns False to quit."""
    if key == ord("q"):
        return False

    try:
        if key == ord(" "):
            driver.toggle()
        elif key == ord("r"):
            driver.reset()
        elif key in EXERCISE_KEYS:
            driver.select_exercise(EXERCISE_KEYS[key])
        elif key == ord("c"):
            summary = driver.complete()
            logger.info(f"🏁 Workout summary: {summary.to_dict()}")
        elif key == ord("n") and driver.state == TrackerState.COMPLETED:
            driver.start_new_workout()
    except TrackerStateError as e:
        logger.warning(str(e))

    return True


async def run(args: argparse.Namespace):
    source = CameraPoseSource(camera_index=args.camera)
    try:
        source.open()
    except PoseSourceError as e:
        logger.error(f"❌ {e}. Check the camera and try again.")
        return 1

    driver = FrameDriver(
        pose_source=source,
        exercise_type=args.exercise,
        recorder=get_history_store() if args.user else None,
        user_id=args.user,
        session_id="camera",
        target_fps=args.fps,
    )
    driver.start()
    driver.start_loop()

    try:
        while True:
            if source.last_frame is not None:
                frame = source.last_frame.copy()
                if driver.latest_pose is not None:
                    draw_pose(frame, driver.latest_pose)
                draw_status(frame, driver)
                cv2.imshow("RepTrack", frame)

            key = cv2.waitKey(1) & 0xFF
            if key != 0xFF and not handle_key(key, driver):
                break

            await asyncio.sleep(1 / 60)
    finally:
        await driver.stop()
        cv2.destroyAllWindows()

    return 0


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Count exercise reps from a local camera")
    parser.add_argument(
        "-e", "--exercise",
        choices=[e.value for e in ExerciseType],
        default=ExerciseType.PUSHUP.value,
        help="Exercise to track (default: pushup)"
    )
    parser.add_argument(
        "-u", "--user",
        type=str,
        default=None,
        help="User ID for saving the completed workout"
    )
    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera index (default: from settings)"
    )
    parser.add_argument(
        "--fps",
        type=float,
        default=None,
        help="Target frame rate (default: from settings)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )
    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_arguments()

    if args.verbose:
        logger.setLevel(logging.DEBUG)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
