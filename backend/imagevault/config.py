"""Application configuration from environment variables."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All config comes from env vars or .env file."""

    # Metadata store: "memory", "json_file" or "sql"
    METADATA_STORE_TYPE: str = "memory"
    METADATA_FILE_PATH: str = "./data/metadata.json"
    DATABASE_URL: str = "sqlite+aiosqlite:///./imagevault.db"

    # Byte storage: "local", "s3" or "supabase"
    FILE_STORAGE_TYPE: str = "local"
    FILE_STORAGE_PATH: str = "./uploads"
    PUBLIC_BASE_URL: str = ""

    API_PORT: int = 8721
    CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Upload limits
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    MAX_FILES_PER_UPLOAD: int = 5
    ALLOWED_FILE_TYPES: str = "image/jpeg,image/png,image/gif,image/webp"
    MAX_KEYWORDS: int = 10
    MAX_KEYWORD_LENGTH: int = 50

    # Optimization applied before storage
    OPTIMIZE_MAX_WIDTH: int = 1920
    JPEG_QUALITY: int = 85
    WEBP_QUALITY: int = 85
    PNG_COMPRESS_LEVEL: int = 8

    # Reject blank search queries instead of listing everything
    SEARCH_REQUIRE_QUERY: bool = False

    # AWS S3
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    S3_BUCKET_NAME: str = ""
    S3_ENDPOINT_URL: str = ""
    SIGNED_URL_EXPIRY: int = 3600
    SIGNED_URL_REFRESH_MARGIN: int = 300

    # Supabase Storage
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    SUPABASE_STORAGE_BUCKET: str = "images"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def allowed_file_types(self) -> list[str]:
        return [t.strip() for t in self.ALLOWED_FILE_TYPES.split(",") if t.strip()]

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
