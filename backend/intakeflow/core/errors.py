"""
Error types used inside the intake pipeline.

None of these escape ``IntakePipeline.ingest``: stages turn them into data
states (defaults, tri-state trust, pending identifiers, unsynced markers) and
only ``NormalizationError`` leads to the top-level fallback response.
"""
from typing import Optional


class NormalizationError(Exception):
    """Raw payload cannot be mapped to a canonical envelope for its kind"""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(f"Cannot normalize {kind} payload: {message}")


class CollaboratorError(Exception):
    """An external collaborator was unreachable, timed out or answered badly"""

    collaborator = "collaborator"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TrustAuthorityError(CollaboratorError):
    collaborator = "trust_authority"


class MintingError(CollaboratorError):
    collaborator = "minting"


class ThreadSyncError(CollaboratorError):
    collaborator = "thread_sync"
