from pydantic import BaseModel


class UploadResponse(BaseModel):
    success: bool
    content: str


class UploadForm(BaseModel):
    file: bytes | None = None
    password: str = ""


class StoredObject(BaseModel):
    identifier: str
    extension: str
    url: str
