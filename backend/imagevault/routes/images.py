"""Images API routes."""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, File as FastAPIFile, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from imagevault.config import Settings
from imagevault.errors import ImageVaultError, ValidationError
from imagevault.schemas.common import ApiResponse
from imagevault.schemas.image import FailedUpload, ImageResponse, PaginationResponse, parse_keywords
from imagevault.services.image_query import page_request
from imagevault.services.image_service import ImagePage, ImageService, ImageView, IncomingFile

router = APIRouter(prefix="/api", tags=["images"])


def get_image_service(request: Request) -> ImageService:
    """FastAPI dependency returning the service built by create_app()."""
    return request.app.state.image_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.post("/upload", response_model=ApiResponse, response_model_exclude_none=True, status_code=201)
async def upload_image(
    image: UploadFile = FastAPIFile(...),
    keywords: Optional[str] = Form(None),
    service: ImageService = Depends(get_image_service),
    settings: Settings = Depends(get_settings),
):
    """Upload a single image with keywords."""
    keyword_list = parse_keywords(keywords, settings.MAX_KEYWORDS, settings.MAX_KEYWORD_LENGTH)
    incoming = await _read(image)
    record = await service.upload(incoming.data, incoming.content_type, incoming.original_name, keyword_list)
    view = await service.view(record)

    return ApiResponse(
        success=True,
        message="Successfully uploaded 1 image(s)",
        data={"images": [_to_response(view)], "count": 1},
    )


@router.post("/upload/multiple", response_model=ApiResponse, response_model_exclude_none=True, status_code=201)
async def upload_multiple_images(
    images: list[UploadFile] = FastAPIFile(...),
    keywords: Optional[str] = Form(None),
    service: ImageService = Depends(get_image_service),
    settings: Settings = Depends(get_settings),
):
    """Upload several images sharing the same keywords. Each file succeeds or fails on its own."""
    if len(images) > settings.MAX_FILES_PER_UPLOAD:
        raise ValidationError(f"Too many files. Maximum {settings.MAX_FILES_PER_UPLOAD} files allowed.")
    keyword_list = parse_keywords(keywords, settings.MAX_KEYWORDS, settings.MAX_KEYWORD_LENGTH)

    files = [await _read(f) for f in images]
    outcomes = await service.upload_many(files, keyword_list)

    uploaded = []
    failed = []
    for incoming, outcome in zip(files, outcomes):
        if isinstance(outcome, ImageVaultError):
            failed.append(
                FailedUpload(
                    original_name=incoming.original_name,
                    error=outcome.error,
                    details=outcome.details,
                ).model_dump(by_alias=True, exclude_none=True)
            )
        else:
            uploaded.append(_to_response(await service.view(outcome)))

    data = {"images": uploaded, "count": len(uploaded), "failed": failed}
    if not uploaded:
        first = next(o for o in outcomes if isinstance(o, ImageVaultError))
        body = ApiResponse(
            success=False,
            error="Failed to upload images",
            details=first.details or first.error,
            data=data,
        )
        return JSONResponse(status_code=first.status_code, content=body.model_dump(exclude_none=True))

    return ApiResponse(
        success=True,
        message=f"Successfully uploaded {len(uploaded)} image(s)",
        data=data,
    )


@router.get("/search", response_model=ApiResponse, response_model_exclude_none=True)
async def search_images(
    q: Optional[str] = Query(None, description="Keywords or file name fragments"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    service: ImageService = Depends(get_image_service),
):
    """Search images by keyword or file name. A blank query lists all images."""
    result = await service.search_images(q, page_request(page, limit))
    if q and q.strip():
        message = f'Found {len(result.images)} images matching "{q.strip()}"'
    else:
        message = f"Retrieved {len(result.images)} images"
    return ApiResponse(success=True, message=message, data=_page_response(result))


@router.get("/images", response_model=ApiResponse, response_model_exclude_none=True)
async def list_images(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    service: ImageService = Depends(get_image_service),
):
    """List all images, newest first."""
    result = await service.list_images(page_request(page, limit))
    return ApiResponse(
        success=True,
        message=f"Retrieved {len(result.images)} images",
        data=_page_response(result),
    )


@router.get("/images/{image_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_image(
    image_id: str,
    service: ImageService = Depends(get_image_service),
):
    """Get a single image by ID."""
    view = await service.get_image(image_id)
    return ApiResponse(
        success=True,
        message="Image retrieved successfully",
        data={"image": _to_response(view)},
    )


@router.delete("/images/{image_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def delete_image(
    image_id: str,
    service: ImageService = Depends(get_image_service),
):
    """Delete an image and its stored bytes."""
    await service.delete_image(image_id)
    return ApiResponse(
        success=True,
        message="Image deleted successfully",
        data={"deleted": True, "id": image_id},
    )


@router.get("/stats", response_model=ApiResponse, response_model_exclude_none=True)
async def get_stats(service: ImageService = Depends(get_image_service)):
    """Total image count, total stored bytes and the five most recent uploads."""
    stats = await service.get_stats()
    return ApiResponse(
        success=True,
        message="Upload statistics retrieved successfully",
        data={
            "totalImages": stats.total_images,
            "totalSize": stats.total_size,
            "recentUploads": [_to_response(v) for v in stats.recent_uploads],
        },
    )


async def _read(upload: UploadFile) -> IncomingFile:
    """Read an uploaded file into memory, normalizing its content type."""
    content_type = (upload.content_type or "").split(";", 1)[0].strip().lower()
    return IncomingFile(
        data=await upload.read(),
        content_type=content_type,
        original_name=upload.filename or "unnamed",
    )


def _to_response(view: ImageView) -> dict:
    """Convert a record and its URL to the camelCase response dict."""
    record = view.record
    return ImageResponse(
        id=record.id,
        storage_key=record.storage_key,
        original_name=record.original_name,
        keywords=record.keywords,
        upload_date=record.upload_date,
        file_size=record.file_size,
        content_type=record.content_type,
        url=view.url,
    ).model_dump(by_alias=True, mode="json")


def _page_response(result: ImagePage) -> dict:
    return {
        "images": [_to_response(v) for v in result.images],
        "pagination": PaginationResponse(**asdict(result.pagination)).model_dump(by_alias=True),
    }
