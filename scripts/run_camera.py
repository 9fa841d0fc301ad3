#!/usr/bin/env python3
"""CLI that feeds webcam frames to the engine for enrollment and recognition."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

import cv2

from geoface.config import load_config
from geoface.engine import FaceEngine
from geoface.errors import TrainingError
from geoface.io_utils import setup_logging
from geoface.types import PoseLabel

LOGGER = logging.getLogger("scripts.camera")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enroll and recognize faces from a webcam")
    parser.add_argument("--camera", type=int, default=0, help="OpenCV camera index")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/engine.yaml"),
        help="Engine configuration YAML",
    )
    parser.add_argument(
        "--enroll",
        type=str,
        default=None,
        metavar="LABEL",
        help="Capture well-posed frames and train LABEL before recognizing",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop recognizing after this many seconds (default: run until interrupted)",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args()


async def pump_frames(cap: cv2.VideoCapture, engine: FaceEngine, stop: asyncio.Event, fps: float = 30.0) -> None:
    while not stop.is_set():
        ok, frame = await asyncio.to_thread(cap.read)
        if not ok:
            LOGGER.warning("Camera returned no frame; stopping")
            stop.set()
            break
        engine.push_frame(frame)
        await asyncio.sleep(1.0 / fps)


async def enroll(engine: FaceEngine, label: str) -> None:
    await engine.begin_capture()
    last_pose: Optional[PoseLabel] = None
    while len(engine.buffer) < engine.config.min_samples:
        pose = await engine.update_pose()
        if pose != last_pose:
            LOGGER.info("Pose: %s", pose.value)
            last_pose = pose
        result = engine.capture()
        if result.admitted:
            have, need = engine.capture_progress
            LOGGER.info("Capture %d/%d", have, need)
            await asyncio.sleep(0.5)
        else:
            await asyncio.sleep(0.1)
    try:
        entry = await engine.train(label)
    except TrainingError as exc:
        LOGGER.error("Training %s failed: %s", label, exc)
        return
    if entry is not None:
        LOGGER.info("Enrolled %s with %d new descriptors", label, len(entry))


async def run(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    engine = FaceEngine.from_config(config)
    cap = cv2.VideoCapture(args.camera)
    if not cap.isOpened():
        raise RuntimeError(f"Unable to open camera {args.camera}")

    stop = asyncio.Event()
    pump = asyncio.ensure_future(pump_frames(cap, engine, stop))
    try:
        await engine.start()
        if args.enroll:
            await enroll(engine, args.enroll)

        last_label: Optional[str] = None

        def _report(result) -> None:
            nonlocal last_label
            if result.label != last_label:
                where = result.location.city if result.location is not None else None
                LOGGER.info("Recognized: %s distance=%s city=%s", result.label, result.distance, where)
                last_label = result.label

        engine.loop.subscribe(_report)
        await engine.start_recognition()
        try:
            await asyncio.wait_for(stop.wait(), timeout=args.duration)
        except asyncio.TimeoutError:
            pass
    finally:
        stop.set()
        await pump
        await engine.close()
        cap.release()


def main() -> None:
    args = parse_args()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")


if __name__ == "__main__":
    main()
