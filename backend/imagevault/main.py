"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from imagevault.config import Settings, settings as default_settings
from imagevault.errors import ImageVaultError
from imagevault.routes.images import router as images_router
from imagevault.schemas.common import ApiResponse
from imagevault.services.file_storage import LocalFileStorage, build_file_storage
from imagevault.services.image_service import ImageService
from imagevault.services.metadata_store import build_metadata_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the metadata store on startup, close it on shutdown."""
    store = app.state.image_service.store
    await store.initialize()
    logger.info(
        f"Image service ready (storage={app.state.image_service.storage.name}, metadata={store.name})"
    )

    yield

    await store.close()


def _error_body(error: str, details: Optional[str] = None) -> dict:
    return ApiResponse(success=False, error=error, details=details).model_dump(exclude_none=True)


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error in the `{success: false, error, details}` envelope."""

    @app.exception_handler(ImageVaultError)
    async def image_vault_error_handler(request: Request, exc: ImageVaultError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.error}: {exc.details}")
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.error, exc.details))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        details = None
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            details = f"{location}: {first.get('msg')}"
        return JSONResponse(status_code=400, content=_error_body("Validation error", details))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=_error_body(str(exc.detail)))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=_error_body("Internal Server Error", str(exc)))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    The storage backend and metadata store named in `settings` are built here
    and handed to one ImageService kept on `app.state`.
    """
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    storage = build_file_storage(settings)
    store = build_metadata_store(settings)

    app = FastAPI(
        title="Image Vault API",
        version="1.0.0",
        description="Upload, optimize and search keyword-tagged images.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.image_service = ImageService.from_settings(settings, storage, store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/api/health")
    async def health_check(request: Request):
        """Verify API and metadata store connectivity."""
        service: ImageService = request.app.state.image_service
        try:
            await service.store.ping()
            return {"status": "ok", "storage": service.storage.name, "metadata": service.store.name}
        except Exception as e:
            return {"status": "error", "storage": service.storage.name, "metadata": str(e)}

    app.include_router(images_router)

    # Locally stored images are served as static files
    if isinstance(storage, LocalFileStorage):
        app.mount("/uploads", StaticFiles(directory=storage.base_path), name="uploads")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("imagevault.main:app", host="0.0.0.0", port=default_settings.API_PORT)
