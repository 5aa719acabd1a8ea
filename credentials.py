"""Credential capability handed to the session controller.

The hosting environment decides which Gemini key is active. Sessions only see
this small interface, so tests can swap in a fake.
"""
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from dotenv import load_dotenv

from errors import CredentialSelectionUnavailable

logger = logging.getLogger(__name__)

STANDARD_KEY_VAR = "GEMINI_API_KEY"
PRO_KEY_VAR = "GEMINI_PRO_API_KEY"


class CredentialProvider(Protocol):
    def has_elevated_credential(self) -> bool: ...

    def request_credential_selection(self) -> None: ...

    def resolve_api_key(self, elevated: bool) -> Optional[str]: ...


class EnvironmentCredentials:
    """Keys live in the process environment, optionally refreshed from an env file.

    "Selecting" a credential means re-reading the env file, so a key the user
    just pasted there is picked up without a restart.
    """

    def __init__(self, env_file: str = ".env"):
        self.env_file = Path(env_file)

    def has_elevated_credential(self) -> bool:
        return bool(os.getenv(PRO_KEY_VAR))

    def request_credential_selection(self) -> None:
        if not self.env_file.is_file():
            raise CredentialSelectionUnavailable(
                f"Credential selection reads {self.env_file}, which does not exist. "
                f"Create it with {PRO_KEY_VAR}=<your key> and try again."
            )
        load_dotenv(self.env_file, override=True)
        logger.info("Reloaded credentials from %s", self.env_file)

    def resolve_api_key(self, elevated: bool) -> Optional[str]:
        # Looked up on every call; never cached.
        order = (PRO_KEY_VAR, STANDARD_KEY_VAR) if elevated else (STANDARD_KEY_VAR, PRO_KEY_VAR)
        for name in order:
            value = os.getenv(name)
            if value:
                return value
        return None
