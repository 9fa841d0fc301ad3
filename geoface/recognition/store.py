"""Durable descriptor store and its serialized merge."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from geoface.errors import PersistenceCorrupt
from geoface.io_utils import dump_json, load_json
from geoface.recognition.matcher import MatcherIndex
from geoface.types import LabeledDescriptorSet, Store

LOGGER = logging.getLogger("geoface.recognition.store")

STORE_KEY = "faceDescriptors"


def store_to_records(store: Store) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in store.values()]


def records_to_store(records: Any) -> Store:
    """Rebuild a store from its JSON records.

    Repeated labels are folded into the first occurrence, in file order.
    """
    if not isinstance(records, list):
        raise PersistenceCorrupt(f"Expected a list of records, got {type(records).__name__}")
    store: Store = {}
    for idx, record in enumerate(records):
        if not isinstance(record, dict):
            raise PersistenceCorrupt(f"Record {idx} is not an object")
        try:
            entry = LabeledDescriptorSet.from_dict(record)
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceCorrupt(f"Record {idx} is malformed: {exc}") from exc
        if not entry.descriptors:
            LOGGER.warning("Skipping empty descriptor set for %s", entry.label)
            continue
        if entry.label in store:
            LOGGER.info("Compacting duplicate record for %s", entry.label)
            store[entry.label] = store[entry.label].extend(entry)
        else:
            store[entry.label] = entry
    dims = {d.shape[0] for entry in store.values() for d in entry.descriptors}
    if len(dims) > 1:
        raise PersistenceCorrupt(f"Descriptors have mixed dimensionality: {sorted(dims)}")
    return store


class PersistenceStore:
    """JSON file holding every labeled descriptor set.

    The file is rewritten in full on each save via a temp file + rename.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @classmethod
    def in_directory(cls, directory: Path) -> "PersistenceStore":
        return cls(Path(directory) / f"{STORE_KEY}.json")

    def load(self) -> Store:
        if not self.path.exists():
            LOGGER.info("No descriptor store at %s; starting empty", self.path)
            return {}
        try:
            store = records_to_store(load_json(self.path))
        except (OSError, ValueError, PersistenceCorrupt) as exc:
            LOGGER.warning("Descriptor store %s unreadable (%s); starting empty", self.path, exc)
            return {}
        LOGGER.info(
            "Loaded %d labels / %d descriptors from %s",
            len(store),
            sum(len(entry) for entry in store.values()),
            self.path,
        )
        return store

    def save(self, store: Store) -> None:
        dump_json(self.path, store_to_records(store))
        LOGGER.debug("Saved %d labels to %s", len(store), self.path)


class DescriptorRepository:
    """Owns the in-memory store, its file, and the matcher built from it.

    :meth:`merge` is the only way to change the store. Merges run one at a
    time under a lock: read the current store, append, write the file, then
    rebuild the index. Overlapping trainings therefore both land.
    """

    def __init__(self, store: PersistenceStore, match_threshold: float = 0.6) -> None:
        self.store = store
        self.match_threshold = match_threshold
        self._data: Store = {}
        self._lock = asyncio.Lock()
        self.index = MatcherIndex.empty(match_threshold)
        self.version = 0

    def snapshot(self) -> Store:
        return dict(self._data)

    def get(self, label: str) -> Optional[LabeledDescriptorSet]:
        return self._data.get(label)

    @property
    def labels(self) -> List[str]:
        return list(self._data.keys())

    async def load(self) -> Store:
        async with self._lock:
            self._data = await asyncio.to_thread(self.store.load)
            self.index = MatcherIndex.rebuild(self._data, self.match_threshold)
            self.version += 1
            return dict(self._data)

    async def merge(self, entry: LabeledDescriptorSet) -> LabeledDescriptorSet:
        """Append ``entry`` under its label and persist; returns the merged set."""
        if not entry.descriptors:
            raise ValueError(f"Refusing to persist an empty descriptor set for {entry.label!r}")
        async with self._lock:
            updated = dict(self._data)
            existing = updated.get(entry.label)
            merged = existing.extend(entry) if existing is not None else entry
            updated[entry.label] = merged
            index = MatcherIndex.rebuild(updated, self.match_threshold)
            await asyncio.to_thread(self.store.save, updated)
            self._data = updated
            self.index = index
            self.version += 1
            LOGGER.info(
                "Merged %d descriptors into %s (total=%d, labels=%d)",
                len(entry),
                entry.label,
                len(merged),
                len(updated),
            )
            return merged
