from fastapi import BackgroundTasks, Request
from loguru import logger
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect

from filedrop.auth import CredentialGate, mask_key
from filedrop.errors import (
    InvalidToken,
    MalformedMultipart,
    MissingFile,
    MissingToken,
    PayloadTooLarge,
    StorageFailure,
)
from filedrop.ledger import UploadLedger
from filedrop.models import StoredObject, UploadForm
from filedrop.naming import IdentifierGenerator
from filedrop.sniffing import ClassifiedFile, classify
from filedrop.storage import LocalObjectStore

FILE_FIELD = "file"
TOKEN_FIELD = "password"


class UploadPartCollector:
    # keeps the first file and password parts, later duplicates are dropped
    def __init__(self):
        self.parts: dict[str, bytearray] = {}
        self.finished = False
        self.part_open = False
        self._headers: dict[bytes, bytes] = {}
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._current: bytearray | None = None

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_end": self.on_end,
        }

    def on_part_begin(self) -> None:
        self.part_open = True
        self._headers = {}
        self._current = None

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[bytes(self._header_field).lower()] = bytes(self._header_value)
        self._header_field.clear()
        self._header_value.clear()

    def on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        name = options.get(b"name", b"").decode("latin-1")
        if name in (FILE_FIELD, TOKEN_FIELD) and name not in self.parts:
            self._current = self.parts[name] = bytearray()

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._current is not None:
            self._current += data[start:end]

    def on_part_end(self) -> None:
        self.part_open = False
        self._current = None

    def on_end(self) -> None:
        self.finished = True


async def read_upload_form(request: Request, max_size_bytes: int) -> UploadForm:
    content_type = request.headers.get("content-type", "")
    media_type, params = parse_options_header(content_type)
    boundary = params.get(b"boundary")
    if media_type.lower() != b"multipart/form-data" or not boundary:
        logger.warning("Upload rejected: not multipart content_type={}", content_type or "-")
        raise MalformedMultipart()

    content_length = request.headers.get("content-length", "")
    if content_length.isdigit() and int(content_length) > max_size_bytes:
        logger.warning("Upload rejected: content_length={} limit={}", content_length, max_size_bytes)
        raise PayloadTooLarge()

    collector = UploadPartCollector()
    parser = MultipartParser(boundary, collector.callbacks())
    received = 0
    try:
        async for chunk in request.stream():
            received += len(chunk)
            if received > max_size_bytes:
                logger.warning("Upload rejected: body exceeded limit={} after bytes={}", max_size_bytes, received)
                raise PayloadTooLarge()
            parser.write(chunk)
        parser.finalize()
    except (MultipartParseError, ClientDisconnect) as exc:
        logger.warning("Upload rejected: multipart read failed error={!r}", exc)
        raise MalformedMultipart() from exc

    if not collector.finished or collector.part_open:
        logger.warning("Upload rejected: multipart body truncated bytes={}", received)
        raise MalformedMultipart()

    file_part = collector.parts.get(FILE_FIELD)
    token_part = collector.parts.get(TOKEN_FIELD)
    try:
        password = token_part.decode("utf-8") if token_part is not None else ""
    except UnicodeDecodeError as exc:
        logger.warning("Upload rejected: token is not UTF-8")
        raise MalformedMultipart() from exc
    return UploadForm(file=bytes(file_part) if file_part is not None else None, password=password)


class UploadOrchestrator:
    def __init__(
        self,
        *,
        generator: IdentifierGenerator,
        gate: CredentialGate,
        store: LocalObjectStore,
        ledger: UploadLedger,
    ):
        self.generator = generator
        self.gate = gate
        self.store = store
        self.ledger = ledger

    def admit(self, form: UploadForm) -> ClassifiedFile:
        if not form.password:
            logger.warning("Upload rejected: {}", MissingToken.message)
            raise MissingToken()
        if form.file is None:
            logger.warning("Upload rejected: {}", MissingFile.message)
            raise MissingFile()
        classified = ClassifiedFile(data=form.file, kind=classify(form.file))
        if not self.gate.authenticate(form.password):
            raise InvalidToken()
        return classified

    def process(self, form: UploadForm, background_tasks: BackgroundTasks | None = None) -> StoredObject:
        classified = self.admit(form)

        identifier = self.generator.generate()
        try:
            url = self.store.persist(identifier, classified.extension, classified.data)
        except OSError as exc:
            logger.exception("Error writing file identifier={}", identifier)
            raise StorageFailure() from exc

        if background_tasks is not None:
            background_tasks.add_task(self.ledger.record, identifier, form.password)
        else:
            self.ledger.record(identifier, form.password)

        logger.info(
            "Created file url={} kind={} size_bytes={} api_key={}",
            url,
            classified.kind.name,
            len(classified.data),
            mask_key(form.password),
        )
        return StoredObject(identifier=identifier, extension=classified.extension, url=url)
