"""Engine configuration loaded from YAML."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from geoface.io_utils import load_yaml, resolve_path

LOGGER = logging.getLogger("geoface.config")

DEFAULT_STORE_PATH = "data/faceDescriptors.json"


@dataclass
class EngineConfig:
    # enrollment
    min_samples: int = 5
    # matching
    match_threshold: float = 0.6
    # pose guidance, as fractions of the frame
    pose_min_frac: float = 0.3
    pose_max_frac: float = 0.8
    pose_center_margin: float = 0.2
    # recognition loop
    recognition_interval_ms: float = 100.0
    # geolocation
    geo_timeout_s: float = 10.0
    geo_cache_s: float = 60.0
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    user_agent: str = "geoface/0.1"
    # persistence
    store_path: str = DEFAULT_STORE_PATH
    # detector
    det_size: Tuple[int, int] = (640, 640)
    det_thresh: float = 0.5
    providers: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.min_samples < 1:
            raise ValueError("min_samples must be at least 1")
        if self.match_threshold <= 0:
            raise ValueError("match_threshold must be positive")
        if not 0.0 < self.pose_min_frac < self.pose_max_frac <= 1.0:
            raise ValueError("pose fractions must satisfy 0 < pose_min_frac < pose_max_frac <= 1")
        if not 0.0 <= self.pose_center_margin < 0.5:
            raise ValueError("pose_center_margin must be in [0, 0.5)")
        if self.recognition_interval_ms <= 0:
            raise ValueError("recognition_interval_ms must be positive")
        if self.geo_cache_s < 0:
            raise ValueError("geo_cache_s must not be negative")
        self.det_size = tuple(int(v) for v in self.det_size)  # type: ignore[assignment]
        if self.providers is not None:
            self.providers = tuple(self.providers)

    @property
    def recognition_interval_s(self) -> float:
        return self.recognition_interval_ms / 1000.0

    @property
    def has_fixed_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def config_from_dict(data: Dict[str, Any], base_dir: Optional[Path] = None) -> EngineConfig:
    known = {f.name for f in fields(EngineConfig)}
    kwargs = {}
    for key, value in data.items():
        if key not in known:
            LOGGER.warning("Ignoring unknown config key %s", key)
            continue
        kwargs[key] = value
    if "store_path" in kwargs and base_dir is not None:
        kwargs["store_path"] = str(resolve_path(kwargs["store_path"], base_dir))
    return EngineConfig(**kwargs)


def load_config(path: Optional[Path]) -> EngineConfig:
    """Read an engine config YAML; a missing path yields the defaults."""
    if path is None:
        return EngineConfig()
    if not path.exists():
        LOGGER.info("Config %s not found; using defaults", path)
        return EngineConfig()
    config = config_from_dict(load_yaml(path), base_dir=path.parent)
    LOGGER.info(
        "Loaded engine config %s (match_threshold=%.2f min_samples=%d store=%s)",
        path,
        config.match_threshold,
        config.min_samples,
        config.store_path,
    )
    return config
