#!/usr/bin/env python3
"""CLI for enrolling identities from folders of face images."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

import cv2
import pandas as pd
from tqdm import tqdm

from geoface.config import EngineConfig, load_config
from geoface.detectors.insight import InsightFaceDetector
from geoface.errors import TrainingError
from geoface.io_utils import ensure_dir, list_images, setup_logging
from geoface.recognition.store import DescriptorRepository, PersistenceStore
from geoface.recognition.trainer import DescriptorTrainer
from geoface.types import CapturedSample

LOGGER = logging.getLogger("scripts.enroll")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enroll labeled face images into the descriptor store")
    parser.add_argument(
        "--images-dir",
        type=Path,
        default=Path("data/enroll"),
        help="Directory containing labeled face images (per-person subdirectories)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/engine.yaml"),
        help="Engine configuration YAML",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Override the descriptor store path from the config",
    )
    parser.add_argument(
        "--summary-csv",
        type=Path,
        default=None,
        help="Where to write the per-label enrollment summary (default: next to the store)",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="Execution providers for ONNXRuntime (e.g. CUDAExecutionProvider)",
    )
    return parser.parse_args()


def load_samples(label_dir: Path) -> List[CapturedSample]:
    samples: List[CapturedSample] = []
    for img_path in list_images(label_dir):
        image = cv2.imread(str(img_path))
        if image is None:
            LOGGER.warning("Unable to read image: %s", img_path)
            continue
        samples.append(CapturedSample(image=image, created_at=img_path.stat().st_mtime))
    return samples


async def enroll_directory(images_dir: Path, trainer: DescriptorTrainer) -> List[Dict]:
    rows: List[Dict] = []
    label_dirs = sorted(p for p in images_dir.iterdir() if p.is_dir())
    for label_dir in tqdm(label_dirs, desc="Enrolling", unit="label"):
        label = label_dir.name
        samples = load_samples(label_dir)
        row: Dict = {"label": label, "images": len(samples), "added": 0, "total": 0, "status": "ok"}
        try:
            entry = await trainer.train(label, samples)
        except TrainingError as exc:
            LOGGER.warning("Skipping %s: %s", label, exc)
            row["status"] = type(exc).__name__
        else:
            row["added"] = len(entry)
        stored = trainer.repository.get(label)
        row["total"] = len(stored) if stored is not None else 0
        rows.append(row)
    return rows


async def run(args: argparse.Namespace, config: EngineConfig) -> Optional[pd.DataFrame]:
    store_path = args.store or Path(config.store_path)
    detector = InsightFaceDetector(
        providers=args.providers or config.providers,
        det_size=config.det_size,
        det_thresh=config.det_thresh,
    )
    repository = DescriptorRepository(PersistenceStore(store_path), match_threshold=config.match_threshold)
    await detector.prepare()
    await repository.load()
    trainer = DescriptorTrainer(detector, repository, min_samples=config.min_samples)

    if not args.images_dir.is_dir():
        LOGGER.error("Images directory %s does not exist", args.images_dir)
        return None
    rows = await enroll_directory(args.images_dir, trainer)
    if not rows:
        LOGGER.warning("No label directories found under %s", args.images_dir)
        return None

    summary = pd.DataFrame(rows)
    summary_path = args.summary_csv or store_path.with_name("enrollment_summary.csv")
    ensure_dir(summary_path.parent)
    summary.to_csv(summary_path, index=False)
    LOGGER.info(
        "Enrollment done: %d/%d labels ok, store=%s summary=%s",
        int((summary["status"] == "ok").sum()),
        len(summary),
        store_path,
        summary_path,
    )
    return summary


def main() -> None:
    args = parse_args()
    setup_logging()
    config = load_config(args.config)
    asyncio.run(run(args, config))


if __name__ == "__main__":
    main()
