"""Configuration settings for the course import service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase Storage
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    COURSE_PHOTOS_BUCKET: str = "course-photos"
    SCHOOL_PHOTOS_BUCKET: str = "school-photos"
    IMPORT_FOLDER: str = "imports"
    STORAGE_TIMEOUT: float = 30.0

    # Outbound fetches
    USER_AGENT: str = "CourseImporter/1.0"
    PAGE_FETCH_TIMEOUT: float = 15.0
    IMAGE_FETCH_TIMEOUT: float = 15.0
    CONNECT_TIMEOUT: float = 10.0
    MAX_REDIRECTS: int = 10
    MAX_PAGE_BYTES: int = 5 * 1024 * 1024
    IMPORT_BUDGET_SECONDS: float = 60.0  # whole image loop

    # Image processing
    IMAGE_MAX_WIDTH: int = 1920
    IMAGE_MAX_HEIGHT: int = 1080
    IMAGE_QUALITY: int = 80
    IMAGE_FORMAT: str = "webp"
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024

    # Chunked uploads
    UPLOAD_TMP_DIR: str = "/tmp/upload_chunks"

    # Service
    SERVICE_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
