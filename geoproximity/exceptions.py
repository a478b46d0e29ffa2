"""
Custom Exception Hierarchy for the Geo Proximity Service

Structured errors for precise telemetry: every error carries the values that
caused it so the service layer can map it to a response without parsing
messages.
"""
from typing import Any, Optional


class ProximityServiceError(Exception):
    """Base exception for all proximity service errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidCoordinate(ProximityServiceError):
    """Raised when a latitude/longitude pair is out of range or non-finite"""

    def __init__(self, latitude: Any, longitude: Any, reason: str):
        message = f"Invalid coordinate ({latitude}, {longitude}): {reason}"
        super().__init__(message)
        self.latitude = latitude
        self.longitude = longitude
        self.reason = reason


class InvalidArgument(ProximityServiceError):
    """Raised for malformed query arguments (radius, limit, center)"""

    def __init__(self, argument: str, value: Any, reason: str):
        message = f"Invalid {argument}={value!r}: {reason}"
        super().__init__(message)
        self.argument = argument
        self.value = value
        self.reason = reason


class NotFound(ProximityServiceError):
    """Raised when an operation targets an id absent from the store"""

    def __init__(self, entity_id: str):
        super().__init__(f"Entity not found: {entity_id}")
        self.entity_id = entity_id


class VersionConflict(ProximityServiceError):
    """Raised when an optimistic write sees a different record version"""

    def __init__(self, entity_id: str, expected_version: int, actual_version: int):
        message = (
            f"Version conflict for {entity_id}: expected {expected_version}, "
            f"found {actual_version}"
        )
        super().__init__(message)
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class IndexInconsistency(ProximityServiceError):
    """
    Index and store disagree about an id.

    Never raised to callers. Built and logged as a warning so the divergence
    is observable; the store is trusted and the index corrected.
    """

    def __init__(self, entity_id: str, kind: str, bucket: Optional[tuple] = None):
        message = f"Index inconsistency for {entity_id}: {kind}"
        if bucket is not None:
            message += f" (bucket {bucket})"
        super().__init__(message)
        self.entity_id = entity_id
        self.kind = kind
        self.bucket = bucket


class IndexUpdateError(ProximityServiceError):
    """Raised when the spatial index cannot record a membership change"""

    def __init__(self, entity_id: str, reason: str):
        super().__init__(f"Index update failed for {entity_id}: {reason}")
        self.entity_id = entity_id
        self.reason = reason


class SearchCancelled(ProximityServiceError):
    """Raised when a caller cancels a running search; partial results are dropped"""

    def __init__(self, scanned: int = 0):
        super().__init__(f"Search cancelled after scanning {scanned} candidates")
        self.scanned = scanned


class BackingStoreError(ProximityServiceError):
    """Raised when the durable backing store rejects or fails an operation"""

    def __init__(self, operation: str, reason: str, entity_id: Optional[str] = None):
        message = f"Backing store {operation} failed"
        if entity_id:
            message += f" for {entity_id}"
        message += f": {reason}"
        super().__init__(message)
        self.operation = operation
        self.reason = reason
        self.entity_id = entity_id


class ConfigurationError(ProximityServiceError):
    """Raised when service configuration is invalid"""

    def __init__(self, config_field: str, reason: str):
        super().__init__(f"Configuration error in {config_field}: {reason}")
        self.config_field = config_field
        self.reason = reason
