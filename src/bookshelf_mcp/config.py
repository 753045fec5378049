#!/usr/bin/env python3
# MIT License
#
# Copyright (c) 2025 Bookshelf MCP Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Configuration module for Bookshelf MCP Server
Centralizes all configuration values and environment variables
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigurationError


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """Configuration for the MCP server

    Numeric fields read from the environment hold the raw string until
    ``validate()`` parses them, so a malformed value is reported as a
    ConfigurationError rather than escaping as a ValueError.
    """

    # Upstream OAuth (GitHub) - required
    github_client_id: str = field(default_factory=lambda: os.getenv("GITHUB_CLIENT_ID", ""))
    github_client_secret: str = field(
        default_factory=lambda: os.getenv("GITHUB_CLIENT_SECRET", "")
    )

    # Signing key for the consent cookie and OAuth state - required
    cookie_encryption_key: str = field(
        default_factory=lambda: os.getenv("COOKIE_ENCRYPTION_KEY", "")
    )

    # Recommendation service binding
    aws_region: str = field(default_factory=lambda: os.getenv("AWS_REGION", "us-east-1"))
    recommendation_model_id: str = field(
        default_factory=lambda: os.getenv(
            "RECOMMENDATION_MODEL_ID", "meta.llama3-8b-instruct-v1:0"
        )
    )
    recommendation_max_tokens: int = field(
        default_factory=lambda: os.getenv("RECOMMENDATION_MAX_TOKENS", "600")
    )

    # Durable actor namespace binding
    actor_storage_path: str = field(
        default_factory=lambda: os.getenv(
            "ACTOR_STORAGE_PATH", str(Path.home() / ".bookshelf-mcp" / "actors")
        )
    )
    max_actors: int = field(default_factory=lambda: os.getenv("MAX_ACTORS", "10000"))
    actor_idle_ttl: int = field(default_factory=lambda: os.getenv("ACTOR_IDLE_TTL", "3600"))

    # Token lifetimes (seconds)
    access_token_ttl: int = field(default_factory=lambda: os.getenv("ACCESS_TOKEN_TTL", "3600"))
    refresh_token_ttl: int = field(
        default_factory=lambda: os.getenv("REFRESH_TOKEN_TTL", str(86400 * 30))
    )
    authorization_code_ttl: int = field(
        default_factory=lambda: os.getenv("AUTHORIZATION_CODE_TTL", "600")
    )
    consent_cookie_ttl: int = field(
        default_factory=lambda: os.getenv("CONSENT_COOKIE_TTL", str(86400 * 365))
    )

    # Sign the state round-tripped through GitHub (see DESIGN.md)
    oauth_state_signing: bool = field(
        default_factory=lambda: _env_flag("OAUTH_STATE_SIGNING", "true")
    )

    # Honour X-Forwarded-For; only safe behind a proxy that overwrites it
    trust_proxy_headers: bool = field(
        default_factory=lambda: _env_flag("TRUST_PROXY_HEADERS", "false")
    )

    # HTTP server
    host: str = field(default_factory=lambda: os.getenv("MCP_HTTP_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: os.getenv("MCP_HTTP_PORT", "8787"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "WARNING"))

    # Upstream endpoints
    upstream_authorize_url: str = "https://github.com/login/oauth/authorize"
    upstream_token_url: str = "https://github.com/login/oauth/access_token"
    upstream_user_url: str = "https://api.github.com/user"
    upstream_scope: str = "read:user"

    # Display
    server_name: str = "Personal Book Recommendations"
    server_version: str = "1.0.0"

    REQUIRED_FIELDS = {
        "github_client_id": "GITHUB_CLIENT_ID",
        "github_client_secret": "GITHUB_CLIENT_SECRET",
        "cookie_encryption_key": "COOKIE_ENCRYPTION_KEY",
    }

    # Must parse as integers greater than zero
    POSITIVE_INT_FIELDS = {
        "recommendation_max_tokens": "RECOMMENDATION_MAX_TOKENS",
        "max_actors": "MAX_ACTORS",
        "actor_idle_ttl": "ACTOR_IDLE_TTL",
        "access_token_ttl": "ACCESS_TOKEN_TTL",
        "refresh_token_ttl": "REFRESH_TOKEN_TTL",
        "authorization_code_ttl": "AUTHORIZATION_CODE_TTL",
        "consent_cookie_ttl": "CONSENT_COOKIE_TTL",
        "port": "MCP_HTTP_PORT",
    }

    def validate(self) -> "ServerConfig":
        """Fail fast if any required field is missing or malformed.

        Raises:
            ConfigurationError: listing every missing environment variable,
                or naming the first malformed one
        """
        missing = [
            env_name
            for attr, env_name in self.REQUIRED_FIELDS.items()
            if not str(getattr(self, attr) or "").strip()
        ]
        if missing:
            raise ConfigurationError(missing)

        for attr, env_name in self.POSITIVE_INT_FIELDS.items():
            raw = getattr(self, attr)
            try:
                value = int(str(raw).strip())
            except ValueError:
                raise ConfigurationError(
                    message=f"{env_name} must be an integer, got {raw!r}"
                ) from None
            if value <= 0:
                raise ConfigurationError(message=f"{env_name} must be positive")
            setattr(self, attr, value)

        if self.port > 65535:
            raise ConfigurationError(message="MCP_HTTP_PORT must be at most 65535")

        level = str(self.log_level).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigurationError(
                message=f"LOG_LEVEL {self.log_level!r} is not a logging level"
            )
        self.log_level = level
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary (secrets redacted)"""
        return {
            "github_client_id": self.github_client_id,
            "github_client_secret": "***" if self.github_client_secret else "",
            "cookie_encryption_key": "***" if self.cookie_encryption_key else "",
            "aws_region": self.aws_region,
            "recommendation_model_id": self.recommendation_model_id,
            "recommendation_max_tokens": self.recommendation_max_tokens,
            "actor_storage_path": self.actor_storage_path,
            "access_token_ttl": self.access_token_ttl,
            "oauth_state_signing": self.oauth_state_signing,
            "trust_proxy_headers": self.trust_proxy_headers,
            "host": self.host,
            "port": self.port,
        }


def load_config() -> ServerConfig:
    """Build configuration from the environment and validate it eagerly."""
    return ServerConfig().validate()
