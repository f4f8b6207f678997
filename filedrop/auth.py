import sqlite3

from loguru import logger

from filedrop.repository import MetadataRepository


def mask_key(api_key: str) -> str:
    if len(api_key) <= 4:
        return "****"
    return f"****{api_key[-4:]}"


class CredentialGate:
    def __init__(self, repository: MetadataRepository):
        self.repository = repository

    def authenticate(self, token: str | None) -> bool:
        if not token:
            logger.warning("Authentication skipped: no token supplied")
            return False
        try:
            active = self.repository.get_key_active(token)
        except sqlite3.Error:
            logger.exception("Credential lookup failed api_key={}", mask_key(token))
            return False
        if not active:
            logger.warning("Invalid token api_key={} known={}", mask_key(token), active is not None)
            return False
        return True
