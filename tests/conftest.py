import asyncio
import base64
from io import BytesIO
from typing import Optional

import pytest
from PIL import Image

from errors import CredentialSelectionUnavailable
from schemas import PosterConfig

GENERATED_URL = "data:image/png;base64,R0VORVJBVEVE"


class FakeCredentials:
    """Credential capability double with controllable answers."""

    def __init__(self, elevated: bool = False, api_key: Optional[str] = "test-key", selectable: bool = True):
        self.elevated = elevated
        self.api_key = api_key
        self.selectable = selectable
        self.selection_calls = 0
        self.resolved = []

    def has_elevated_credential(self) -> bool:
        return self.elevated

    def request_credential_selection(self) -> None:
        self.selection_calls += 1
        if not self.selectable:
            raise CredentialSelectionUnavailable("Credential selection is not available here.")

    def resolve_api_key(self, elevated: bool) -> Optional[str]:
        self.resolved.append(elevated)
        return self.api_key


class FakeGenerator:
    """Stands in for PosterGenerator; records every call."""

    def __init__(self, result: str = GENERATED_URL, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls = []
        self.gate: Optional[asyncio.Event] = None
        self.progress_seen = []
        self.session = None

    async def generate(self, image, config, use_elevated_tier=False):
        self.calls.append((image, config, use_elevated_tier))
        await asyncio.sleep(0)
        if self.session is not None:
            self.progress_seen.append(self.session.progress_message)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def png_bytes():
    buffer = BytesIO()
    Image.new("RGB", (8, 8), (200, 120, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_data_url(png_bytes):
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def poster_config():
    return PosterConfig(
        productName="Kopi Gula Aren",
        price="Rp 25.000",
        details="Manis alami",
        ratio="1:1",
        quality="1K",
    )


@pytest.fixture
def fake_credentials():
    return FakeCredentials()


@pytest.fixture
def fake_generator():
    return FakeGenerator()
