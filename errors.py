from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    MISSING_CREDENTIAL = "MissingCredential"
    EMPTY_RESPONSE = "EmptyResponse"
    SAFETY_BLOCKED = "SafetyBlocked"
    NO_IMAGE_RENDERED = "NoImageRendered"
    TRANSPORT = "Transport"


class AdCraftError(Exception):
    """Base exception for the poster service."""


# --- Generation adapter failures ---
class PosterGenerationError(AdCraftError):
    """Raised by the generation adapter. Never recovered from locally."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MissingCredentialError(PosterGenerationError):
    kind = ErrorKind.MISSING_CREDENTIAL


class EmptyResponseError(PosterGenerationError):
    kind = ErrorKind.EMPTY_RESPONSE


class SafetyBlockedError(PosterGenerationError):
    kind = ErrorKind.SAFETY_BLOCKED


class NoImageRenderedError(PosterGenerationError):
    kind = ErrorKind.NO_IMAGE_RENDERED


class TransportError(PosterGenerationError):
    """Network, SDK or malformed-response failure, message kept intact."""

    kind = ErrorKind.TRANSPORT


# --- Session controller failures ---
class PosterValidationError(AdCraftError):
    """Submission rejected before any network call."""


class GenerationInProgress(AdCraftError):
    """A generation is already running for this session."""


# --- Credentials ---
class CredentialSelectionError(AdCraftError):
    """The credential selection flow could not be opened."""


class CredentialSelectionUnavailable(CredentialSelectionError):
    pass


# --- Source images ---
class InvalidSourceImage(AdCraftError, ValueError):
    """Uploaded image is missing, too large or not decodable."""


class SourceImageFetchError(AdCraftError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
