import random
import string
import time
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

AspectRatio = Literal["1:1", "3:4", "4:3", "9:16", "16:9"]
Quality = Literal["1K", "2K", "4K"]

_ID_ALPHABET = string.digits + string.ascii_lowercase


class SessionStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    SUCCESS = "success"
    ERROR = "error"


# --- Domain models ---
class PosterConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    productName: str = ""
    price: str = ""
    details: str = ""
    ratio: AspectRatio = "1:1"
    quality: Quality = "1K"


def new_poster_id() -> str:
    # Per-session list only; collisions are tolerable.
    return "".join(random.choices(_ID_ALPHABET, k=9))


class GeneratedPoster(BaseModel):
    id: str = Field(default_factory=new_poster_id)
    url: str = Field(..., description="PNG data URL of the generated poster.")
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
    config: PosterConfig


# --- Request payloads ---
class SourceImagePayload(BaseModel):
    image: str = Field(..., description="Data URL or bare Base64 string of the product photo.")


class SourceImageUrlPayload(BaseModel):
    url: str


class PosterConfigUpdate(BaseModel):
    productName: Optional[str] = None
    price: Optional[str] = None
    details: Optional[str] = None
    ratio: Optional[AspectRatio] = None
    quality: Optional[Quality] = None


# --- Responses ---
class SessionView(BaseModel):
    sessionId: str
    status: SessionStatus
    error: Optional[str] = None
    progressMessage: Optional[str] = None
    hasSourceImage: bool
    config: PosterConfig
    currentPoster: Optional[str] = None
    history: List[GeneratedPoster]
    hasElevatedCredential: bool
