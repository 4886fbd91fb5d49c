"""Configuration management for the AppAuth client."""

import json
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.configuration import AuthorizationServiceConfiguration


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="console", description="Log format ('console' or 'json')")


class HttpClientConfig(BaseModel):
    """Configuration for the aiohttp session used to talk to the authorization server."""
    request_timeout_seconds: float = Field(default=15.0, ge=1.0, description="Total timeout for a single HTTP exchange.")
    connect_timeout_seconds: float = Field(default=15.0, ge=1.0, description="Timeout for establishing a connection.")
    connection_pool_total_limit: int = Field(default=20, ge=1, description="Total connection pool limit for the aiohttp session.")
    connection_pool_per_host_limit: int = Field(default=5, ge=1, description="Per-host connection pool limit for the aiohttp session.")
    connection_pool_dns_cache_ttl_seconds: int = Field(default=300, ge=0, description="DNS cache TTL in seconds for the aiohttp session.")
    ssl_verify: bool = Field(default=True, description="Verify TLS certificates of the authorization server.")


class ClientConfig(BaseModel):
    """Details of the OAuth client and the server it talks to."""
    client_id: Optional[str] = None
    client_secret: Optional[str] = Field(None, description="Only for confidential clients; public clients rely on PKCE.")
    redirect_uri: str = Field(default="http://localhost:8080/oauth/callback", description="Redirect URI registered for this client.")
    scopes: List[str] = Field(default_factory=lambda: ["openid", "profile"])
    discovery_uri: Optional[str] = Field(None, description="Explicit discovery document URI.")
    issuer: Optional[str] = Field(None, description="Issuer URL; the discovery URI is derived from it when discovery_uri is unset.")
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    registration_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    additional_parameters: Dict[str, str] = Field(default_factory=dict, description="Extra authorization request parameters.")

    def has_static_endpoints(self) -> bool:
        return bool(self.authorization_endpoint and self.token_endpoint)

    def to_service_configuration(self) -> AuthorizationServiceConfiguration:
        """
        Builds the configuration of a hand-configured (not discovered) server.

        Raises:
            ValueError: If the authorization or token endpoint is not configured.
        """
        if not self.has_static_endpoints():
            raise ValueError("authorization_endpoint and token_endpoint must both be configured")
        return AuthorizationServiceConfiguration(
            authorization_endpoint=self.authorization_endpoint,
            token_endpoint=self.token_endpoint,
            issuer=self.issuer,
            end_session_endpoint=self.end_session_endpoint,
            registration_endpoint=self.registration_endpoint,
            userinfo_endpoint=self.userinfo_endpoint,
        )


class ValidationConfig(BaseModel):
    """ID token validation and token refresh settings."""
    skip_issuer_https_check: bool = Field(default=False, description="Accept non-https issuers (development servers only).")
    token_expiry_tolerance_seconds: float = Field(default=60.0, ge=0, description="Refresh access tokens this many seconds before they expire.")


class StorageConfig(BaseModel):
    """Configuration for persisting the authorization state."""
    state_store_method: str = Field(default="file", description="Method for storing the auth state ('memory', 'file').")
    state_file_path: Path = Field(default=Path("appauth_state.json"), description="Path of the JSON auth state file.")


class Config(BaseSettings):
    """Main configuration. Loads from environment variables prefixed with APPAUTH_."""

    model_config = SettingsConfigDict(
        env_prefix='APPAUTH_',
        env_nested_delimiter='__',  # e.g., APPAUTH_CLIENT__CLIENT_ID
        extra='ignore',
        env_file='.env',
        env_file_encoding='utf-8'
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    http: HttpClientConfig = Field(default_factory=HttpClientConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def from_file(cls, file_path: Path) -> "Config":
        """Create configuration strictly from a JSON file.
        Note: This does not layer with environment variables.
        """
        with open(file_path) as f:
            config_data = json.load(f)
        return cls.model_validate(config_data)
