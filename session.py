"""Per-session poster state and the generate / history / credential flows.

A session is driven from a single event loop and generates at most one poster
at a time, so no locking is needed. Nothing here outlives the session.
"""
import asyncio
import contextlib
import itertools
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from credentials import CredentialProvider
from errors import (
    CredentialSelectionError,
    ErrorKind,
    GenerationInProgress,
    InvalidSourceImage,
    PosterGenerationError,
    PosterValidationError,
)
from images import data_url_to_bytes, download_filename
from schemas import GeneratedPoster, PosterConfig, SessionStatus, SessionView

logger = logging.getLogger(__name__)

PROGRESS_MESSAGES = [
    "Applying studio lighting...",
    "Composing a premium background...",
    "Setting the typography for name and price...",
    "Polishing the final layout...",
]

MISSING_IMAGE_MESSAGE = "Please upload a product photo first."
MISSING_NAME_MESSAGE = "Product name is required."
MODEL_NOT_FOUND_MESSAGE = "The Pro model was not found for this API key. Opening API key selection..."
SAFETY_MESSAGE = "The image was blocked by the AI safety filter. Try a different product or wording."
CREDENTIAL_MESSAGE = "The API key is missing or invalid. Use 'Select API Key' to choose one."
GENERIC_FAILURE_MESSAGE = "The AI service failed unexpectedly."


class PosterBackend(Protocol):
    async def generate(self, image: str, config: PosterConfig, use_elevated_tier: bool = False) -> str: ...


@dataclass(frozen=True)
class FailureNotice:
    message: str
    reselect_credential: bool = False


def classify_failure(error: Exception) -> FailureNotice:
    """Word a generation failure for the user.

    Structured kinds and status codes are checked first; free-text matching is
    the fallback for errors that carry neither.
    """
    kind = getattr(error, "kind", None)
    status_code = getattr(error, "status_code", None)
    text = getattr(error, "message", None) or str(error)

    if status_code == 404 or "Requested entity was not found" in text or "404" in text:
        return FailureNotice(MODEL_NOT_FOUND_MESSAGE, reselect_credential=True)
    if kind == ErrorKind.SAFETY_BLOCKED or "SAFETY" in text:
        return FailureNotice(SAFETY_MESSAGE)
    if (
        kind == ErrorKind.MISSING_CREDENTIAL
        or status_code in (401, 403)
        or "API key not found" in text
        or "invalid" in text
    ):
        return FailureNotice(CREDENTIAL_MESSAGE, reselect_credential=True)
    return FailureNotice(text or GENERIC_FAILURE_MESSAGE)


class PosterSession:
    def __init__(
        self,
        session_id: str,
        generator: PosterBackend,
        credentials: CredentialProvider,
        progress_interval: float = 3.0,
    ):
        self.session_id = session_id
        self.generator = generator
        self.credentials = credentials
        self.progress_interval = progress_interval

        self.status = SessionStatus.IDLE
        self.error: Optional[str] = None
        self.progress_message: Optional[str] = None
        self.source_image: Optional[str] = None
        self.config = PosterConfig()
        self.current_poster: Optional[str] = None
        self.history: List[GeneratedPoster] = []
        self.has_elevated_credential = False

    # --- Inputs ---
    def set_source_image(self, data_url: str) -> None:
        self.source_image = data_url

    def clear_source_image(self) -> None:
        self.source_image = None

    def update_config(self, **changes) -> PosterConfig:
        # all-or-nothing: one bad field leaves every field as it was
        self.config = PosterConfig.model_validate({**self.config.model_dump(), **changes})
        return self.config

    # --- Generation ---
    def _validate(self) -> None:
        if not self.source_image:
            self.error = MISSING_IMAGE_MESSAGE
            raise PosterValidationError(MISSING_IMAGE_MESSAGE)
        if not self.config.productName.strip():
            self.error = MISSING_NAME_MESSAGE
            raise PosterValidationError(MISSING_NAME_MESSAGE)

    async def _rotate_progress(self) -> None:
        for message in itertools.cycle(PROGRESS_MESSAGES):
            self.progress_message = message
            await asyncio.sleep(self.progress_interval)

    async def generate(self) -> Optional[GeneratedPoster]:
        """Run one generation. Returns the new history entry, or None on failure."""
        if self.status == SessionStatus.GENERATING:
            raise GenerationInProgress("A poster is already being generated for this session.")
        self._validate()

        self.status = SessionStatus.GENERATING
        self.error = None
        config = self.config.model_copy(deep=True)
        ticker = asyncio.create_task(self._rotate_progress())
        try:
            url = await self.generator.generate(self.source_image, config, self.has_elevated_credential)
        except PosterGenerationError as e:
            logger.error("Session %s generation failed: %s", self.session_id, e)
            self._fail(classify_failure(e))
            return None
        except InvalidSourceImage as e:
            self._fail(FailureNotice(str(e)))
            return None
        else:
            entry = GeneratedPoster(url=url, config=config)
            self.current_poster = url
            self.history.insert(0, entry)
            self.status = SessionStatus.SUCCESS
            return entry
        finally:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker
            self.progress_message = None
            if self.status == SessionStatus.GENERATING:
                # an unexpected exception is propagating
                self.status = SessionStatus.ERROR
                self.error = GENERIC_FAILURE_MESSAGE

    def _fail(self, notice: FailureNotice) -> None:
        self.status = SessionStatus.ERROR
        self.error = notice.message
        if notice.reselect_credential:
            self.open_credential_selection()

    # --- History ---
    def select_history(self, poster_id: str) -> GeneratedPoster:
        for entry in self.history:
            if entry.id == poster_id:
                self.current_poster = entry.url
                return entry
        raise KeyError(poster_id)

    def download(self) -> Tuple[str, bytes]:
        if not self.current_poster:
            raise LookupError("No poster has been generated yet.")
        return download_filename(self.config.productName), data_url_to_bytes(self.current_poster)

    # --- Credentials ---
    def refresh_credential_status(self) -> bool:
        try:
            self.has_elevated_credential = self.credentials.has_elevated_credential()
        except CredentialSelectionError as e:
            logger.warning("Could not check the Pro credential status: %s", e)
        return self.has_elevated_credential

    def open_credential_selection(self) -> bool:
        try:
            self.credentials.request_credential_selection()
        except CredentialSelectionError as e:
            logger.error("Credential selection failed: %s", e)
            self.error = str(e)
            return False
        # Assumed selected as soon as the flow opens; the new key is not verified.
        self.has_elevated_credential = True
        return True

    def snapshot(self) -> SessionView:
        return SessionView(
            sessionId=self.session_id,
            status=self.status,
            error=self.error,
            progressMessage=self.progress_message,
            hasSourceImage=self.source_image is not None,
            config=self.config,
            currentPoster=self.current_poster,
            history=self.history,
            hasElevatedCredential=self.has_elevated_credential,
        )


class SessionRegistry:
    """In-memory sessions, evicted once idle for longer than idle_ttl seconds."""

    def __init__(
        self,
        generator: PosterBackend,
        credentials: CredentialProvider,
        progress_interval: float = 3.0,
        idle_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.generator = generator
        self.credentials = credentials
        self.progress_interval = progress_interval
        self.idle_ttl = idle_ttl
        self.clock = clock
        self._sessions: Dict[str, PosterSession] = {}
        self._last_seen: Dict[str, float] = {}

    def create(self) -> PosterSession:
        self.evict_idle()
        session_id = secrets.token_urlsafe(12)
        session = PosterSession(session_id, self.generator, self.credentials, self.progress_interval)
        session.refresh_credential_status()
        self._sessions[session_id] = session
        self._last_seen[session_id] = self.clock()
        return session

    def get(self, session_id: str) -> PosterSession:
        session = self._sessions[session_id]
        self._last_seen[session_id] = self.clock()
        return session

    def drop(self, session_id: str) -> None:
        del self._sessions[session_id]
        self._last_seen.pop(session_id, None)

    def evict_idle(self) -> List[str]:
        now = self.clock()
        stale = [
            session_id
            for session_id, seen in self._last_seen.items()
            if now - seen > self.idle_ttl and self._sessions[session_id].status != SessionStatus.GENERATING
        ]
        for session_id in stale:
            self.drop(session_id)
        if stale:
            logger.info("Evicted %d idle session(s)", len(stale))
        return stale

    def __len__(self) -> int:
        return len(self._sessions)
