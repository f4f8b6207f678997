import os
import tempfile
from pathlib import Path

from loguru import logger


class LocalObjectStore:
    def __init__(self, root_dir: str, base_url: str):
        self.root = Path(root_dir)
        self.base_url = base_url.rstrip("/")

    def init(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def object_name(self, identifier: str, extension: str) -> str:
        return f"{identifier}.{extension}"

    def public_url(self, identifier: str, extension: str) -> str:
        return f"{self.base_url}/{self.object_name(identifier, extension)}"

    def persist(self, identifier: str, extension: str, data: bytes) -> str:
        target = self.root / self.object_name(identifier, extension)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{identifier}.", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Object written path={} size_bytes={}", str(target), len(data))
        return self.public_url(identifier, extension)

    def resolve(self, filename: str) -> Path | None:
        if not filename or filename.startswith(".") or "/" in filename or "\\" in filename:
            return None
        path = self.root / filename
        if not path.is_file():
            return None
        return path
