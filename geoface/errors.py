"""Exception taxonomy for the enrollment and recognition engine."""

from __future__ import annotations


class GeoFaceError(Exception):
    """Base class for all geoface errors."""


class ModelNotReady(GeoFaceError):
    """Detection models are not loaded yet; every engine operation is blocked."""


class NoFaceDetected(GeoFaceError):
    """No face in the image or frame. Callers skip the sample or frame."""


class PoseRejected(GeoFaceError):
    """Capture refused because the face is not framed well."""


class EngineStateError(GeoFaceError):
    """Operation not allowed in the engine's current mode."""


class TrainingError(GeoFaceError):
    """Training attempt failed; the user has to recapture."""


class InvalidLabel(TrainingError):
    pass


class InsufficientSamples(TrainingError):
    def __init__(self, have: int, need: int) -> None:
        super().__init__(f"Need at least {need} captures before training, have {have}")
        self.have = have
        self.need = need


class NoUsableCaptures(TrainingError):
    """None of the buffered captures produced a descriptor."""


class StaleResult(TrainingError):
    """Session changed while training ran; the result was discarded."""


class GeoError(GeoFaceError):
    """Location lookup failed. Always degrades to "no location"."""


class GeoPermissionDenied(GeoError):
    pass


class GeoUnavailable(GeoError):
    pass


class GeoTimeout(GeoUnavailable):
    pass


class GeoServiceError(GeoError):
    """Reverse geocoding service unreachable or returned garbage."""


class LocationBusy(GeoError):
    """A location request is already in flight."""


class PersistenceCorrupt(GeoFaceError):
    """Descriptor store on disk could not be parsed."""
