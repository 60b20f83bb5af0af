"""Configuration for the Mailgun MCP server."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    service_name: str = Field(default="mailgun-mcp-server")

    transport: str = Field(default="stdio")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    mailgun_api_key: SecretStr = Field(default=SecretStr(""))
    upstream_base_url: Optional[str] = Field(default=None)
    upstream_auth_scheme: str = Field(default="basic")
    upstream_username: str = Field(default="api")
    upstream_timeout_seconds: float = Field(default=30)
    upstream_verify_ssl: bool = Field(default=True)

    openapi_location: Optional[str] = Field(default=None)
    openapi_cache_seconds: int = Field(default=3600)

    mcp_json_response: bool = Field(default=False)
    shutdown_grace_seconds: float = Field(default=10)
    cors_allow_origins: str = Field(default="*")

    log_level: str = Field(default="INFO")

    def transport_mode(self) -> str:
        transport = self.transport.strip().lower()
        if transport in {"streamable-http", "streamablehttp"}:
            return "http"
        return transport

    def allowed_origins(self) -> List[str]:
        return [item.strip() for item in self.cors_allow_origins.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
