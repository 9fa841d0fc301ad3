import asyncio

import numpy as np
import pytest

from geoface.config import EngineConfig
from geoface.engine import EngineMode, FaceEngine
from geoface.errors import EngineStateError, InsufficientSamples, InvalidLabel, ModelNotReady, NoUsableCaptures
from geoface.recognition.store import PersistenceStore
from geoface.types import PoseLabel

from helpers import PARIS, RowDetector, StubGeocoder

ALICE = np.array([[1.0, 0.0, 0.0]], dtype=np.float32)
EMPTY = np.zeros((1, 3), dtype=np.float32)


def make_engine(make_repository, detector=None, geo=None, **config):
    return FaceEngine(
        detector or RowDetector(),
        make_repository(),
        config=EngineConfig(**config),
        geo=geo,
    )


async def capture_good(engine, frame, count):
    engine.push_frame(frame)
    await engine.update_pose()
    return [engine.capture() for _ in range(count)]


def test_operations_blocked_until_ready(make_repository):
    engine = make_engine(make_repository, detector=RowDetector(ready=False))
    with pytest.raises(ModelNotReady):
        engine.capture(ALICE)
    with pytest.raises(ModelNotReady):
        asyncio.run(engine.update_pose(ALICE))
    with pytest.raises(ModelNotReady):
        asyncio.run(engine.start_recognition())


def test_pose_tracks_latest_frame(make_repository):
    async def scenario():
        engine = make_engine(make_repository)
        await engine.start()
        assert engine.current_pose_label() == PoseLabel.NOT_DETECTED
        engine.push_frame(ALICE)
        await engine.update_pose()
        good = engine.current_pose_label()
        await engine.update_pose(EMPTY)
        return good, engine.current_pose_label()

    good, missing = asyncio.run(scenario())
    assert good == PoseLabel.GOOD
    assert missing == PoseLabel.NOT_DETECTED


def test_bad_pose_blocks_capture(make_repository):
    async def scenario():
        engine = make_engine(make_repository, detector=RowDetector(box_frac=(0.45, 0.45, 0.1, 0.1)))
        await engine.start()
        results = await capture_good(engine, ALICE, 3)
        return engine, results

    engine, results = asyncio.run(scenario())
    assert engine.current_pose_label() == PoseLabel.MOVE_CLOSER
    assert not any(r.admitted for r in results)
    assert len(engine.buffer) == 0


def test_enroll_then_recognize(make_repository, make_geo, store_path):
    async def scenario():
        engine = make_engine(make_repository, geo=make_geo(), recognition_interval_ms=5)
        await engine.start()
        results = await capture_good(engine, ALICE, 5)
        assert engine.mode is EngineMode.CAPTURING
        assert engine.capture_progress == (5, 5)
        entry = await engine.train("Alice")
        assert engine.mode is EngineMode.CAPTURING
        assert len(engine.buffer) == 0

        await engine.start_recognition()
        for _ in range(100):
            await asyncio.sleep(0.01)
            if engine.current_recognition_result() is not None:
                break
        result = engine.current_recognition_result()
        await engine.stop_recognition()
        return engine, results, entry, result

    engine, results, entry, result = asyncio.run(scenario())
    assert all(r.admitted for r in results)
    assert len(entry) == 5
    assert entry.locations == [PARIS] * 5
    assert result.label == "Alice"
    assert result.location == PARIS
    assert engine.mode is EngineMode.IDLE
    assert engine.current_recognition_result() is None
    assert len(PersistenceStore(store_path).load()["Alice"]) == 5


def test_training_with_too_few_captures_keeps_buffer(make_repository):
    async def scenario():
        engine = make_engine(make_repository)
        await engine.start()
        await capture_good(engine, ALICE, 3)
        with pytest.raises(InsufficientSamples):
            await engine.train("Alice")
        with pytest.raises(InvalidLabel):
            await engine.train("  ")
        return engine

    engine = asyncio.run(scenario())
    assert len(engine.buffer) == 3
    assert engine.mode is EngineMode.CAPTURING


def test_training_failure_surfaces_and_consumes_captures(make_repository):
    async def scenario():
        engine = make_engine(make_repository)
        await engine.start()
        await capture_good(engine, ALICE, 5)
        for sample in engine.buffer.samples:
            sample.image[:] = 0
        with pytest.raises(NoUsableCaptures):
            await engine.train("Alice")
        return engine

    engine = asyncio.run(scenario())
    assert len(engine.buffer) == 0
    assert engine.mode is EngineMode.CAPTURING
    assert engine.repository.labels == []


def test_capture_rejected_while_training(make_repository):
    async def scenario():
        detector = RowDetector()
        engine = make_engine(make_repository, detector=detector)
        await engine.start()
        await capture_good(engine, ALICE, 5)
        detector.release = asyncio.Event()
        training = asyncio.ensure_future(engine.train("Alice"))
        await asyncio.sleep(0)
        assert engine.mode is EngineMode.TRAINING
        rejected = engine.capture(ALICE)
        with pytest.raises(EngineStateError):
            await engine.train("Alice")
        with pytest.raises(EngineStateError):
            await engine.start_recognition()
        detector.release.set()
        await training
        return rejected

    rejected = asyncio.run(scenario())
    assert not rejected.admitted
    assert rejected.reason == "TrainingInProgress"


def test_reset_during_training_discards_result(make_repository, store_path):
    async def scenario():
        detector = RowDetector()
        engine = make_engine(make_repository, detector=detector)
        await engine.start()
        await capture_good(engine, ALICE, 5)
        detector.release = asyncio.Event()
        training = asyncio.ensure_future(engine.train("Alice"))
        await asyncio.sleep(0)
        await engine.reset_session()
        detector.release.set()
        return engine, await training

    engine, entry = asyncio.run(scenario())
    assert entry is None
    assert engine.mode is EngineMode.IDLE
    assert not store_path.exists()


def test_recognition_requires_stop_before_capture(make_repository):
    async def scenario():
        engine = make_engine(make_repository)
        await engine.start()
        await engine.start_recognition()
        with pytest.raises(EngineStateError):
            engine.capture(ALICE)
        await engine.begin_capture()
        mode = engine.mode
        await engine.close()
        return mode

    assert asyncio.run(scenario()) is EngineMode.CAPTURING


def test_switching_to_recognition_drops_captures(make_repository):
    async def scenario():
        engine = make_engine(make_repository)
        await engine.start()
        await capture_good(engine, ALICE, 2)
        session = engine.session
        await engine.start_recognition()
        state = (len(engine.buffer), engine.session > session, engine.current_pose_label())
        await engine.stop_recognition()
        return state

    buffered, bumped, pose = asyncio.run(scenario())
    assert buffered == 0
    assert bumped
    assert pose == PoseLabel.NOT_DETECTED


def test_geo_failure_never_blocks_enrollment(make_repository, make_geo):
    async def scenario():
        engine = make_engine(make_repository, geo=make_geo(geocoder=StubGeocoder(error=RuntimeError("dns"))))
        await engine.start()
        results = await capture_good(engine, ALICE, 5)
        entry = await engine.train("Alice")
        return results, entry

    results, entry = asyncio.run(scenario())
    assert all(r.admitted for r in results)
    assert entry.locations == [None] * 5


def test_capture_uses_the_classified_frame(make_repository):
    async def scenario():
        engine = make_engine(make_repository)
        await engine.start()
        engine.push_frame(ALICE)
        await engine.update_pose()
        engine.push_frame(EMPTY)
        classified = engine.capture()
        unclassified = engine.capture(EMPTY.copy())
        return classified, unclassified

    classified, unclassified = asyncio.run(scenario())
    assert classified.admitted
    np.testing.assert_array_equal(classified.sample.image, ALICE)
    assert not unclassified.admitted
    assert unclassified.reason == "PoseRejected"
    assert unclassified.pose == PoseLabel.NOT_DETECTED


def test_begin_capture_refused_while_training(make_repository):
    async def scenario():
        detector = RowDetector()
        engine = make_engine(make_repository, detector=detector)
        await engine.start()
        await capture_good(engine, ALICE, 5)
        detector.release = asyncio.Event()
        training = asyncio.ensure_future(engine.train("Alice"))
        await asyncio.sleep(0)
        with pytest.raises(EngineStateError):
            await engine.begin_capture()
        mode = engine.mode
        rejected = engine.capture()
        detector.release.set()
        entry = await training
        return engine, mode, rejected, entry

    engine, mode, rejected, entry = asyncio.run(scenario())
    assert mode is EngineMode.TRAINING
    assert not rejected.admitted
    assert rejected.reason == "TrainingInProgress"
    assert len(entry) == 5
    assert engine.mode is EngineMode.CAPTURING
