import sqlite3

from loguru import logger

from filedrop.auth import mask_key
from filedrop.repository import MetadataRepository


class UploadLedger:
    def __init__(self, repository: MetadataRepository):
        self.repository = repository

    def record(self, identifier: str, api_key_used: str) -> None:
        try:
            self.repository.create_upload(identifier=identifier, api_key_used=api_key_used)
        except sqlite3.Error:
            logger.exception(
                "Upload record failed identifier={} api_key={}", identifier, mask_key(api_key_used)
            )


class AccessLedger:
    def __init__(self, repository: MetadataRepository):
        self.repository = repository

    def record_access(self, identifier: str) -> None:
        try:
            updated = self.repository.touch_upload(identifier)
        except sqlite3.Error:
            logger.exception("Access record failed identifier={}", identifier)
            return
        if not updated:
            logger.debug("No upload record for identifier={}", identifier)
