"""
exactfetch configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_DEFAULT_TOKEN_FILE = Path.home() / ".exactfetch" / "tokens.json"


class ApiConfig(BaseModel):
    """Exact Online API and OAuth2 client settings."""

    base_url: str = Field(
        default="https://start.exactonline.nl/api",
        description="API root; OAuth2 endpoints live under {base_url}/oauth2",
    )
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    timeout: float = Field(default=60.0, gt=0, description="Request timeout in seconds")
    verify_ssl: bool = True


class AuthConfig(BaseModel):
    """Token persistence and expiry settings."""

    token_file: Path = Field(default=_DEFAULT_TOKEN_FILE)
    token_lifetime: int = Field(
        default=570,
        gt=0,
        description="Seconds after issue when a token is treated as expired",
    )


class SecurityConfig(BaseModel):
    """Security and privacy settings."""

    encrypt_at_rest: bool = Field(default=False, description="Encrypt the stored token file")


class RetrievalConfig(BaseModel):
    """Retrieval engine settings."""

    estimate_total: bool = Field(
        default=False,
        description="Ask the API for a $count before paging transactions",
    )
    default_division: str | None = None


class ExactFetchConfig(BaseModel):
    """Root configuration for exactfetch."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)

    # Output settings
    output_dir: str = Field(default="./data")

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> ExactFetchConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        api_env = {
            "base_url": os.environ.get("EXACTFETCH_API"),
            "client_id": os.environ.get("EXACTFETCH_CLIENT_ID"),
            "client_secret": os.environ.get("EXACTFETCH_CLIENT_SECRET"),
            "redirect_uri": os.environ.get("EXACTFETCH_REDIRECT_URI"),
        }
        api_env = {k: v for k, v in api_env.items() if v}
        if api_env:
            api = data.get("api", {})
            api.update(api_env)
            data["api"] = api

        env_token_file = os.environ.get("EXACTFETCH_TOKEN_FILE")
        if env_token_file:
            auth = data.get("auth", {})
            auth["token_file"] = env_token_file
            data["auth"] = auth

        env_division = os.environ.get("EXACTFETCH_DIVISION")
        if env_division:
            retrieval = data.get("retrieval", {})
            retrieval["default_division"] = env_division
            data["retrieval"] = retrieval

        env_encrypt = os.environ.get("EXACTFETCH_ENCRYPT_TOKENS")
        if env_encrypt and env_encrypt.lower() in ("1", "true", "yes"):
            security = data.get("security", {})
            security["encrypt_at_rest"] = True
            data["security"] = security

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)
