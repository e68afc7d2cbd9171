"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock mode enables local development without object storage.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.access.service import ObjectStorageConfig
from ..infrastructure.storage.client import MOCK_ENDPOINT_URL, StorageConfig


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like public_object_search_paths), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Encore Media API"
    api_version: str = "v1"

    # R2/S3 Storage Configuration
    r2_account_id: str = Field(
        default="",
        description="Cloudflare account ID for R2"
    )
    r2_access_key_id: str = Field(
        default="",
        description="R2 access key ID"
    )
    r2_secret_access_key: str = Field(
        default="",
        description="R2 secret access key"
    )
    r2_bucket_name: str = Field(
        default="encore-media",
        description="R2 bucket holding uploaded media and public assets"
    )
    r2_endpoint_url: Optional[str] = Field(
        default=None,
        description="R2 endpoint URL. Auto-constructed from account_id if not provided."
    )
    r2_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real R2. Enables local dev without object storage."
    )

    # Object access layer
    private_object_dir: str = Field(
        default="",
        description="Key prefix of the managed private namespace, e.g. '.private'. Uploads are disabled while empty."
    )
    public_object_search_paths: str = Field(
        default="public",
        description="Comma-separated key prefixes searched for unmanaged public assets."
    )
    upload_url_ttl_seconds: int = Field(
        default=900,
        description="Lifetime of signed upload URLs. Expired URLs make the client's upload fail."
    )
    download_cache_ttl_seconds: int = Field(
        default=3600,
        description="max-age sent in Cache-Control when streaming objects."
    )
    stream_chunk_size: int = Field(
        default=64 * 1024,
        description="Bytes read from storage per chunk when streaming."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:5173",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def public_object_search_paths_list(self) -> list[str]:
        """Parse comma-separated search paths into a list."""
        return [
            path.strip().strip("/")
            for path in self.public_object_search_paths.split(",")
            if path.strip().strip("/")
        ]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def r2_endpoint(self) -> str:
        """
        Construct R2 endpoint URL from account ID.

        R2 endpoints follow the pattern: https://{account_id}.r2.cloudflarestorage.com
        Mock mode without an account falls back to a local placeholder host.
        """
        if self.r2_endpoint_url:
            return self.r2_endpoint_url
        if self.r2_mock_mode and not self.r2_account_id:
            return MOCK_ENDPOINT_URL
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    def storage_config(self) -> StorageConfig:
        """Credentials and endpoint for the storage client."""
        return StorageConfig(
            access_key_id=self.r2_access_key_id,
            secret_access_key=self.r2_secret_access_key,
            bucket_name=self.r2_bucket_name,
            endpoint_url=self.r2_endpoint,
        )

    def object_storage_config(self) -> ObjectStorageConfig:
        """Layout and limits injected into ObjectAccessService."""
        return ObjectStorageConfig(
            bucket_name=self.r2_bucket_name,
            private_object_dir=self.private_object_dir,
            public_object_search_paths=tuple(self.public_object_search_paths_list),
            upload_url_ttl_seconds=self.upload_url_ttl_seconds,
            download_cache_ttl_seconds=self.download_cache_ttl_seconds,
            stream_chunk_size=self.stream_chunk_size,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        if not self.private_object_dir.strip("/"):
            missing.append("PRIVATE_OBJECT_DIR")

        if not self.r2_bucket_name:
            missing.append("R2_BUCKET_NAME")

        # R2 credentials only required if not in mock mode
        if not self.r2_mock_mode:
            if not self.r2_account_id and not self.r2_endpoint_url:
                missing.append("R2_ACCOUNT_ID or R2_ENDPOINT_URL")
            if not self.r2_access_key_id:
                missing.append("R2_ACCESS_KEY_ID")
            if not self.r2_secret_access_key:
                missing.append("R2_SECRET_ACCESS_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
