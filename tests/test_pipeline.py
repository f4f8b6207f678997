import asyncio

import pytest
from fastapi import BackgroundTasks

from filedrop.errors import (
    InvalidToken,
    MalformedMultipart,
    MissingFile,
    MissingToken,
    PayloadTooLarge,
    StorageFailure,
    UndeterminedFileType,
    UnsupportedFileType,
)
from filedrop.models import UploadForm
from filedrop.naming import IdentifierGenerator
from filedrop.pipeline import UploadOrchestrator, read_upload_form

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00"


class FakeGate:
    def __init__(self, allowed=("validkey",)):
        self.allowed = set(allowed)
        self.calls = []

    def authenticate(self, token):
        self.calls.append(token)
        return token in self.allowed


class FakeStore:
    def __init__(self, error=None):
        self.error = error
        self.objects = {}

    def persist(self, identifier, extension, data):
        if self.error is not None:
            raise self.error
        self.objects[f"{identifier}.{extension}"] = data
        return f"http://testserver/{identifier}.{extension}"


class FakeLedger:
    def __init__(self):
        self.records = []

    def record(self, identifier, api_key_used):
        self.records.append((identifier, api_key_used))


def build_orchestrator(*, gate=None, store=None, generator=None):
    gate = gate or FakeGate()
    store = store or FakeStore()
    ledger = FakeLedger()
    orchestrator = UploadOrchestrator(
        generator=generator or IdentifierGenerator(("Quiet", "Amber"), ("Otter", "Yak")),
        gate=gate,
        store=store,
        ledger=ledger,
    )
    return orchestrator, gate, store, ledger


def test_successful_upload_persists_and_records():
    orchestrator, gate, store, ledger = build_orchestrator()
    stored = orchestrator.process(UploadForm(file=PNG_BYTES, password="validkey"))
    assert stored.extension == "png"
    assert stored.url == f"http://testserver/{stored.identifier}.png"
    assert store.objects == {f"{stored.identifier}.png": PNG_BYTES}
    assert ledger.records == [(stored.identifier, "validkey")]
    assert gate.calls == ["validkey"]


def test_ledger_is_deferred_to_background_tasks():
    orchestrator, _, _, ledger = build_orchestrator()
    background_tasks = BackgroundTasks()
    stored = orchestrator.process(UploadForm(file=PNG_BYTES, password="validkey"), background_tasks)
    assert ledger.records == []
    assert len(background_tasks.tasks) == 1
    task = background_tasks.tasks[0]
    assert task.args == (stored.identifier, "validkey")


def test_missing_token_short_circuits_everything():
    orchestrator, gate, store, ledger = build_orchestrator()
    with pytest.raises(MissingToken):
        orchestrator.process(UploadForm(file=b"not a known format", password=""))
    assert gate.calls == []
    assert store.objects == {}
    assert ledger.records == []


def test_missing_file_is_rejected_before_lookup():
    orchestrator, gate, _, _ = build_orchestrator()
    with pytest.raises(MissingFile):
        orchestrator.process(UploadForm(password="validkey"))
    assert gate.calls == []


def test_empty_file_is_undetermined():
    orchestrator, _, store, _ = build_orchestrator()
    with pytest.raises(UndeterminedFileType):
        orchestrator.process(UploadForm(file=b"", password="validkey"))
    assert store.objects == {}


def test_rejected_file_skips_credential_lookup():
    orchestrator, gate, store, _ = build_orchestrator()
    with pytest.raises(UnsupportedFileType):
        orchestrator.process(UploadForm(file=b"%PDF-1.7\n", password="nosuchkey"))
    assert gate.calls == []
    assert store.objects == {}


def test_invalid_token_never_persists():
    orchestrator, gate, store, ledger = build_orchestrator()
    with pytest.raises(InvalidToken) as excinfo:
        orchestrator.process(UploadForm(file=PNG_BYTES, password="revokedkey"))
    assert excinfo.value.status_code == 401
    assert gate.calls == ["revokedkey"]
    assert store.objects == {}
    assert ledger.records == []


def test_storage_error_becomes_generic_failure():
    orchestrator, _, _, ledger = build_orchestrator(store=FakeStore(error=PermissionError("/srv/files is read-only")))
    with pytest.raises(StorageFailure) as excinfo:
        orchestrator.process(UploadForm(file=PNG_BYTES, password="validkey"))
    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "Internal Server Error"
    assert "read-only" not in str(excinfo.value)
    assert ledger.records == []


class StreamingRequest:
    def __init__(self, chunks, content_type="multipart/form-data; boundary=b"):
        self.headers = {"content-type": content_type}
        self.chunks = chunks
        self.chunks_read = 0

    async def stream(self):
        for chunk in self.chunks:
            self.chunks_read += 1
            yield chunk


TOKEN_PART = b'--b\r\nContent-Disposition: form-data; name="password"\r\n\r\nvalidkey\r\n'
FILE_PART_HEAD = b'--b\r\nContent-Disposition: form-data; name="file"; filename="a.png"\r\n\r\n'


def test_stream_read_stops_once_limit_is_passed():
    chunks = (b"\x00" * 65536 for _ in range(200))
    request = StreamingRequest(chunks)
    with pytest.raises(PayloadTooLarge):
        asyncio.run(read_upload_form(request, 1000))
    assert request.chunks_read == 1


def test_first_parts_win_and_extra_fields_are_ignored():
    body = (
        TOKEN_PART
        + b'--b\r\nContent-Disposition: form-data; name="password"\r\n\r\nsecondkey\r\n'
        + b'--b\r\nContent-Disposition: form-data; name="note"\r\n\r\nhello\r\n'
        + FILE_PART_HEAD
        + PNG_BYTES
        + b"\r\n"
        + FILE_PART_HEAD
        + b"%PDF-1.7\r\n--b--\r\n"
    )
    request = StreamingRequest([body[:7], body[7:50], body[50:]])
    form = asyncio.run(read_upload_form(request, 10000))
    assert form.password == "validkey"
    assert form.file == PNG_BYTES


def test_unterminated_body_is_malformed():
    request = StreamingRequest([TOKEN_PART + FILE_PART_HEAD + PNG_BYTES])
    with pytest.raises(MalformedMultipart):
        asyncio.run(read_upload_form(request, 10000))


def test_non_utf8_token_is_malformed():
    body = b'--b\r\nContent-Disposition: form-data; name="password"\r\n\r\n\xff\xfe\r\n--b--\r\n'
    with pytest.raises(MalformedMultipart):
        asyncio.run(read_upload_form(StreamingRequest([body]), 10000))


def test_missing_boundary_is_malformed():
    request = StreamingRequest([b"garbage"], content_type="multipart/form-data")
    with pytest.raises(MalformedMultipart):
        asyncio.run(read_upload_form(request, 10000))
    assert request.chunks_read == 0
