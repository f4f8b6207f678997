import uvicorn

from filedrop.config import get_settings
from filedrop.main import create_app


def main() -> None:
    settings = get_settings()
    options = {"host": settings.host, "port": settings.port}
    if settings.use_https:
        options.update(ssl_certfile=settings.ssl_certfile, ssl_keyfile=settings.ssl_keyfile)
    uvicorn.run(create_app(settings), log_config=None, **options)


if __name__ == "__main__":
    main()
