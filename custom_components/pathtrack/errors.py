"""
Exception taxonomy for the Path Track engine.

Acquisition and classification errors are raised to the immediate caller so
the UI can prompt the user. Enrichment and sync errors are absorbed by the
enricher and the scheduler loop and retried on the next natural cycle.
"""
from __future__ import annotations


class PathTrackError(Exception):
    """Base class for all Path Track errors."""


class AcquisitionError(PathTrackError):
    """The positioning source could not deliver a fix."""

    remediation = "Check that the location source is online and try again."

    def __init__(self, message: str, remediation: str | None = None) -> None:
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation


class PermissionDenied(AcquisitionError):
    remediation = (
        "Grant location permission to the companion app and make sure the "
        "source entity reports GPS coordinates."
    )


class PositionUnavailable(AcquisitionError):
    remediation = "Make sure the device is online and location services are enabled."


class AcquisitionTimeout(AcquisitionError):
    remediation = "Go outdoors with a clear view of the sky and enable high-accuracy mode."


class AccuracyRejected(PathTrackError):
    """A fix did not meet the accuracy policy. Not a hard failure."""

    def __init__(self, accuracy_m: float | None, threshold_m: float, message: str | None = None) -> None:
        self.accuracy_m = accuracy_m
        self.threshold_m = threshold_m
        if message is None:
            if accuracy_m is None:
                message = "Fix rejected: accuracy not reported"
            else:
                message = f"Fix rejected: accuracy {accuracy_m:.0f} m exceeds {threshold_m:.0f} m"
        super().__init__(message)


class InvalidCoordinates(AccuracyRejected):
    """Latitude or longitude outside the valid range."""


class EnrichmentFailed(PathTrackError):
    """Reverse geocoding failed; the fix is kept without an address."""


class SyncFailed(PathTrackError):
    """The remote path store could not be reached or answered unsuccessfully."""
