import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

STANDARD_MODEL = "gemini-2.5-flash-image"
PRO_MODEL = "gemini-3-pro-image-preview"


class Settings(BaseModel):
    standard_model: str = STANDARD_MODEL
    pro_model: str = PRO_MODEL
    env_file: str = ".env"
    progress_interval: float = 3.0
    max_upload_bytes: int = 10 * 1024 * 1024
    session_ttl: float = 3600.0
    cors_origins: List[str] = ["*"]
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("ADCRAFT_CORS_ORIGINS", "*")
        return cls(
            standard_model=os.getenv("ADCRAFT_STANDARD_MODEL", STANDARD_MODEL),
            pro_model=os.getenv("ADCRAFT_PRO_MODEL", PRO_MODEL),
            env_file=os.getenv("ADCRAFT_ENV_FILE", ".env"),
            progress_interval=float(os.getenv("ADCRAFT_PROGRESS_INTERVAL", "3")),
            max_upload_bytes=int(os.getenv("ADCRAFT_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))),
            session_ttl=float(os.getenv("ADCRAFT_SESSION_TTL", "3600")),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            host=os.getenv("ADCRAFT_HOST", "127.0.0.1"),
            port=int(os.getenv("ADCRAFT_PORT", "8000")),
            log_level=os.getenv("ADCRAFT_LOG_LEVEL", "INFO").upper(),
        )
