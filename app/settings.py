from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeneralConfig(BaseSettings):
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.01


class LogConfig(BaseSettings):
    LOG_FORMAT: Literal["json", "console"] = "json"
    LOG_LEVEL: str = "INFO"


class RoutesConfig(BaseSettings):
    """Static route tables.

    Keys are full hostnames or their first DNS label, values are upstream
    base URLs. Override with JSON, e.g.
    REGISTRY_ROUTES='{"docker": "https://registry-1.docker.io"}'
    """

    REGISTRY_ROUTES: dict[str, str] = {
        "docker": "https://registry-1.docker.io",
        "quay": "https://quay.io",
        "gcr": "https://gcr.io",
        "k8s-gcr": "https://k8s.gcr.io",
        "k8s": "https://registry.k8s.io",
        "ghcr": "https://ghcr.io",
        "cloudsmith": "https://docker.cloudsmith.io",
    }
    API_ROUTES: dict[str, str] = {
        "gemini": "https://generativelanguage.googleapis.com",
        "openai": "https://api.openai.com",
    }

    @field_validator("REGISTRY_ROUTES", "API_ROUTES")
    @classmethod
    def lowercase_hostnames(cls, routes: dict[str, str]) -> dict[str, str]:
        return {host.lower(): upstream for host, upstream in routes.items()}


class RewriteConfig(BaseSettings):
    ASSET_URL: str = "https://daiaji.github.io/cf-proxy/"
    USE_JSDELIVR: bool = True
    GITHUB_CDN_BASE_URL: str = "https://cdn.jsdelivr.net/gh"

    ERROR_PAGE_MESSAGE: str = (
        "Unable to access the requested resource. Please try again later."
    )
    ERROR_PAGE_STATUS: int = 500

    @field_validator("ASSET_URL")
    @classmethod
    def trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else f"{value}/"


class UpstreamConfig(BaseSettings):
    UPSTREAM_CONNECT_TIMEOUT: float = 30.0
    # Large image layers take a while
    UPSTREAM_READ_TIMEOUT: float = 1800.0
    UPSTREAM_WRITE_TIMEOUT: float = 1800.0
    UPSTREAM_POOL_TIMEOUT: float = 10.0


class Settings(
    GeneralConfig,
    LogConfig,
    RoutesConfig,
    RewriteConfig,
    UpstreamConfig,
    BaseSettings,
):
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.prod", ".env.test"),
        extra="allow",
    )


settings = Settings()
