"""Local JSON file holding the repository connection and the encrypted token."""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from stockbook.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class StoredCredentials(BaseModel):
    owner: Optional[str] = None
    repo: Optional[str] = None
    data_file: Optional[str] = None
    encrypted_token: Optional[str] = None


class CredentialStore:
    """Reads and writes `StoredCredentials` at CREDENTIALS_PATH."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.CREDENTIALS_PATH)

    def load(self) -> StoredCredentials:
        if not self.path.exists():
            return StoredCredentials()
        try:
            return StoredCredentials.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except ValueError as e:
            logger.warning(f"Ignoring unreadable credentials file {self.path}: {e}")
            return StoredCredentials()

    def save(self, credentials: StoredCredentials) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(credentials.model_dump_json(indent=2), encoding="utf-8")

    def update(self, **fields) -> StoredCredentials:
        credentials = self.load().model_copy(update=fields)
        self.save(credentials)
        return credentials

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Removed stored credentials at {self.path}")
