"""Shared fixtures: sandboxed settings, an app client and generated images."""
import io
import os
import tempfile

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# imagevault.main builds a module-level app on import; keep its upload
# directory out of the working tree.
os.environ.setdefault("FILE_STORAGE_PATH", os.path.join(tempfile.gettempdir(), "imagevault-test-uploads"))
os.environ.setdefault("METADATA_STORE_TYPE", "memory")
os.environ.setdefault("FILE_STORAGE_TYPE", "local")

from imagevault.config import Settings  # noqa: E402
from imagevault.main import create_app  # noqa: E402
from imagevault.services.file_storage import LocalFileStorage  # noqa: E402
from imagevault.services.image_optimizer import ImageOptimizer  # noqa: E402
from imagevault.services.image_service import ImageService  # noqa: E402
from imagevault.services.metadata_store import InMemoryMetadataStore  # noqa: E402


def make_image(fmt: str = "PNG", size: tuple[int, int] = (32, 24), color=(200, 40, 40)) -> bytes:
    """Encode a solid-color image in memory."""
    mode = "RGBA" if fmt == "PNG" else "RGB"
    img = Image.new(mode, size, color)
    if fmt == "GIF":
        img = img.convert("P")
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image("PNG")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        FILE_STORAGE_TYPE="local",
        FILE_STORAGE_PATH=str(tmp_path / "uploads"),
        METADATA_STORE_TYPE="memory",
        METADATA_FILE_PATH=str(tmp_path / "data" / "metadata.json"),
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'images.db'}",
        CORS_ORIGINS="http://localhost:3000",
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(str(tmp_path / "files"))


@pytest.fixture
def service(storage) -> ImageService:
    """Service over local files and the in-memory store with a small size limit."""
    return ImageService(
        storage,
        InMemoryMetadataStore(),
        ImageOptimizer(max_width=64),
        allowed_types=["image/jpeg", "image/png", "image/gif", "image/webp"],
        max_file_size=256 * 1024,
    )
