"""Application settings and configuration helpers."""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strongly-typed configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = Field(default="WhatsApp Operator Relay", description="Human-readable service name.")
    environment: str = Field(default="local", description="Deployment environment identifier.")
    log_level: str = Field(default="INFO", description="Application log level.")
    port: int = Field(default=3001, description="Port used by the bundled launcher.")

    whatsapp_access_token: str | None = Field(
        default=None,
        description="Bearer token for the WhatsApp Cloud API.",
    )
    whatsapp_verify_token: str | None = Field(
        default=None,
        description="Token echoed back by the provider during webhook subscription.",
    )
    whatsapp_phone_number_id: str | None = Field(
        default=None,
        description="Sender phone number id used to build the send-message URL.",
    )
    app_secret: str | None = Field(
        default=None,
        description="App secret used to verify X-Hub-Signature-256 headers.",
    )

    graph_api_base_url: str = Field(
        default="https://graph.facebook.com",
        description="Base URL of the provider API.",
    )
    graph_api_version: str = Field(default="v19.0", description="Pinned Graph API version.")
    send_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Upper bound for a single outbound send call.",
    )
    webhook_object: str = Field(
        default="whatsapp_business_account",
        description="Expected value of the `object` field on webhook envelopes.",
    )
    dashboard_queue_size: int = Field(
        default=1000,
        gt=0,
        description="Deltas a dashboard session may fall behind before it is disconnected.",
    )

    frontend_origin: AnyHttpUrl | None = Field(
        default=None,
        description="Allowed dashboard origin (CORS). If omitted, defaults to localhost dev server.",
    )
    additional_origins: List[AnyHttpUrl] = Field(
        default_factory=list,
        description="Additional allowed CORS origins.",
    )

    @property
    def cors_origins(self) -> list[str]:
        """Return the full list of allowed CORS origins."""

        origins: list[str] = []

        if self.frontend_origin:
            origins.append(str(self.frontend_origin).rstrip("/"))
        else:
            origins.extend([
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            ])

        for origin in self.additional_origins:
            origins.append(str(origin).rstrip("/"))

        # Deduplicate while preserving order
        seen: set[str] = set()
        unique: list[str] = []
        for origin in origins:
            if origin not in seen:
                seen.add(origin)
                unique.append(origin)

        return unique

    @property
    def outbound_configured(self) -> bool:
        return bool(self.whatsapp_access_token and self.whatsapp_phone_number_id)

    @property
    def missing_credentials(self) -> list[str]:
        """Names of provider settings that are not set."""

        names = [
            "whatsapp_access_token",
            "whatsapp_verify_token",
            "whatsapp_phone_number_id",
            "app_secret",
        ]
        return [name.upper() for name in names if not getattr(self, name)]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()
