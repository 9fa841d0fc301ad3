import asyncio

import numpy as np
import pytest

from geoface.errors import InsufficientSamples, InvalidLabel, ModelNotReady, NoUsableCaptures, StaleResult
from geoface.recognition.store import PersistenceStore
from geoface.recognition.trainer import DescriptorTrainer
from geoface.types import CapturedSample

from helpers import PARIS, RowDetector


def samples(*rows, location=None):
    return [CapturedSample(image=np.array([row], dtype=np.float32), location=location) for row in rows]


def face(i: int):
    return [1.0, float(i), 0.0]


def test_too_few_samples_rejected_before_extraction(row_detector, make_repository):
    trainer = DescriptorTrainer(row_detector, make_repository())
    with pytest.raises(InsufficientSamples) as info:
        asyncio.run(trainer.train("Alice", samples(*[face(i) for i in range(4)])))
    assert info.value.have == 4
    assert row_detector.calls == 0


@pytest.mark.parametrize("label", ["", "   ", None])
def test_label_required(row_detector, make_repository, label):
    trainer = DescriptorTrainer(row_detector, make_repository())
    with pytest.raises(InvalidLabel):
        asyncio.run(trainer.train(label, samples(*[face(i) for i in range(5)])))
    assert row_detector.calls == 0


def test_model_not_ready(make_repository):
    trainer = DescriptorTrainer(RowDetector(ready=False), make_repository())
    with pytest.raises(ModelNotReady):
        asyncio.run(trainer.train("Alice", samples(*[face(i) for i in range(5)])))


def test_faceless_samples_are_skipped(row_detector, make_repository, store_path):
    trainer = DescriptorTrainer(row_detector, make_repository())
    batch = samples(face(1), [0, 0, 0], face(2), [0, 0, 0], face(3), location=PARIS)
    entry = asyncio.run(trainer.train(" Alice ", batch))
    assert entry.label == "Alice"
    assert len(entry) == 3
    assert entry.locations == [PARIS, PARIS, PARIS]
    assert row_detector.calls == 5
    assert len(PersistenceStore(store_path).load()["Alice"]) == 3


def test_no_usable_captures_writes_nothing(row_detector, make_repository, store_path):
    trainer = DescriptorTrainer(row_detector, make_repository())
    with pytest.raises(NoUsableCaptures):
        asyncio.run(trainer.train("Alice", samples(*[[0, 0, 0]] * 5)))
    assert not store_path.exists()


def test_retraining_appends(row_detector, make_repository):
    async def scenario():
        repository = make_repository()
        trainer = DescriptorTrainer(row_detector, repository)
        await trainer.train("Alice", samples(*[face(i) for i in range(5)]))
        await trainer.train("Bob", samples(*[face(10 + i) for i in range(5)]))
        await trainer.train("Alice", samples(*[face(20 + i) for i in range(6)]))
        return repository

    repository = asyncio.run(scenario())
    assert repository.labels == ["Alice", "Bob"]
    assert len(repository.get("Alice")) == 11
    np.testing.assert_allclose(repository.get("Alice").descriptors[-1], face(25))
    assert len(repository.index) == 16


def test_overlapping_trainings_both_land(make_repository, store_path):
    async def scenario():
        detector = RowDetector()
        detector.release = asyncio.Event()
        repository = make_repository()
        await repository.load()
        trainer = DescriptorTrainer(detector, repository, min_samples=3)
        first = asyncio.ensure_future(trainer.train("Bob", samples(*[face(i) for i in range(5)])))
        second = asyncio.ensure_future(trainer.train("Bob", samples(*[face(10 + i) for i in range(3)])))
        await asyncio.sleep(0)
        # both trainings have read nothing yet and are waiting on extraction
        detector.release.set()
        await asyncio.gather(first, second)
        return repository

    repository = asyncio.run(scenario())
    assert len(repository.get("Bob")) == 8
    assert len(PersistenceStore(store_path).load()["Bob"]) == 8


def test_stale_training_is_discarded(row_detector, make_repository, store_path):
    trainer = DescriptorTrainer(row_detector, make_repository())
    with pytest.raises(StaleResult):
        asyncio.run(trainer.train("Alice", samples(*[face(i) for i in range(5)]), is_current=lambda: False))
    assert not store_path.exists()


def test_sample_that_breaks_extraction_is_skipped(make_repository, caplog):
    class FlakyDetector(RowDetector):
        async def _detect_all(self, frame):
            if np.asarray(frame)[0, 1] == 2.0:
                raise RuntimeError("onnx session died")
            return await super()._detect_all(frame)

    trainer = DescriptorTrainer(FlakyDetector(), make_repository())
    entry = asyncio.run(trainer.train("Alice", samples(*[face(i) for i in range(5)])))
    assert len(entry) == 4
    assert all(d[1] != 2.0 for d in entry.descriptors)
    assert "failed extraction" in caplog.text
