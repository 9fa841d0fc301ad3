import pytest

from geoface.geo.annotator import GeoAnnotator
from geoface.geo.position import StaticPositionProvider
from geoface.recognition.store import DescriptorRepository, PersistenceStore

from helpers import PARIS, RowDetector, StubGeocoder


@pytest.fixture
def row_detector():
    return RowDetector()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "faceDescriptors.json"


@pytest.fixture
def make_repository(store_path):
    def _make(threshold: float = 0.6) -> DescriptorRepository:
        return DescriptorRepository(PersistenceStore(store_path), match_threshold=threshold)

    return _make


@pytest.fixture
def make_geo():
    def _make(geocoder=None, provider=None, timeout: float = 1.0, cache_ttl: float = 60.0) -> GeoAnnotator:
        return GeoAnnotator(
            provider or StaticPositionProvider(PARIS.latitude, PARIS.longitude),
            geocoder or StubGeocoder(),
            timeout=timeout,
            cache_ttl=cache_ttl,
        )

    return _make
