import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from uuid import uuid4

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, Response
from loguru import logger
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from filedrop.auth import CredentialGate
from filedrop.config import Settings, get_settings
from filedrop.errors import UploadError
from filedrop.ledger import AccessLedger, UploadLedger
from filedrop.models import UploadResponse
from filedrop.naming import IdentifierGenerator
from filedrop.pipeline import UploadOrchestrator, read_upload_form
from filedrop.repository import MetadataRepository
from filedrop.storage import LocalObjectStore


def configure_logging(settings: Settings) -> None:
    logger.configure(patcher=lambda record: record["extra"].setdefault("request_id", "-"))
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level.upper(),
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | req={extra[request_id]} | {name}:{function}:{line} | {message}",
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    repository = MetadataRepository(settings.database_path, pool_size=settings.db_pool_size)
    storage = LocalObjectStore(settings.storage_dir, settings.public_base_url)
    access_ledger = AccessLedger(repository)
    orchestrator = UploadOrchestrator(
        generator=IdentifierGenerator.from_wordlists(),
        gate=CredentialGate(repository),
        store=storage,
        ledger=UploadLedger(repository),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging(settings)
        Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
        repository.init()
        storage.init()
        logger.info(
            "Starting app app_name={} environment={} storage_dir={} base_url={}",
            settings.app_name,
            settings.app_env,
            settings.storage_dir,
            settings.public_base_url,
        )
        yield
        logger.info("Shutting down app app_name={}", settings.app_name)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    def error_response(status_code: int, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content=UploadResponse(success=False, content=message).model_dump(),
        )

    @app.middleware("http")
    async def add_request_context(request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid4()))
        start = time.perf_counter()
        with logger.contextualize(request_id=request_id):
            logger.info("Request start method={} path={}", request.method, request.url.path)
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Request failed method={} path={}", request.method, request.url.path)
                raise
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "Request finish method={} path={} status={} duration_ms={:.2f}",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
            )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(UploadError)
    async def upload_error_handler(_: Request, exc: UploadError):
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(_: Request, exc: RequestValidationError):
        return error_response(400, "invalid request parameters")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_: Request, exc: StarletteHTTPException):
        message = str(exc.detail) if exc.detail else "request failed"
        return error_response(exc.status_code, message)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "environment": settings.app_env}

    @app.post("/upload", response_model=UploadResponse)
    async def upload(request: Request, background_tasks: BackgroundTasks):
        form = await read_upload_form(request, settings.max_upload_size_bytes)
        stored = await run_in_threadpool(orchestrator.process, form, background_tasks)
        return UploadResponse(success=True, content=stored.url)

    @app.get("/{filename}")
    def download(filename: str):
        path = storage.resolve(filename)
        if path is None:
            raise HTTPException(status_code=404, detail="Not Found")
        return FileResponse(path=path, background=BackgroundTask(access_ledger.record_access, path.stem))

    return app


app = create_app()
