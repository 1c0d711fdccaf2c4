# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_firebase

"""
Configuration for the coreason-firebase package.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

OAUTH_TOKEN_URL = "https://www.googleapis.com/oauth2/v4/token"
PUBLIC_KEYS_URL = "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
ISSUER_PREFIX = "https://securetoken.google.com/"

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/firebase.database",
    "https://www.googleapis.com/auth/firebase.messaging",
    "https://www.googleapis.com/auth/identitytoolkit",
    "https://www.googleapis.com/auth/userinfo.email",
]


class FirebaseAuthConfig(BaseSettings):
    """
    Configuration settings for coreason-firebase.

    Attributes:
        project_id (str): The Firebase / Google Cloud project id.
        http_timeout (float): Timeout in seconds for all provider network operations.
        token_url (str): The OAuth2 token-exchange endpoint.
        public_keys_url (str): The endpoint serving the ID-token signing certificates.
        audience (str | None): Expected 'aud' of ID tokens. Defaults to project_id.
        issuer (str | None): Expected 'iss' of ID tokens. Defaults to https://securetoken.google.com/{project_id}.
        api_mode (str): "http" for the real provider, "memory" for the in-process test double.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_FIREBASE_",
        case_sensitive=False,
    )

    project_id: str = Field(..., min_length=1)
    http_timeout: float = Field(..., gt=0, description="Timeout in seconds for all provider network operations.")

    token_url: str = OAUTH_TOKEN_URL
    public_keys_url: str = PUBLIC_KEYS_URL
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))

    assertion_lifetime: int = Field(3600, gt=0)
    token_refresh_margin: int = Field(60, ge=0)
    public_keys_default_ttl: int = Field(3600, ge=0)
    public_keys_refresh_cooldown: float = Field(30.0, ge=0)
    clock_skew_leeway: int = Field(0, ge=0)

    audience: str | None = None
    issuer: str | None = None
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")

    api_mode: Literal["http", "memory"] = "http"
    unsafe_local_dev: bool = False

    service_account_file: Path | None = None
    private_key: SecretStr | None = None
    client_email: str | None = None
    private_key_id: str | None = None

    @field_validator("project_id")
    @classmethod
    def strip_project_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("project_id must not be blank")
        return v

    @model_validator(mode="after")
    def set_defaults(self) -> "FirebaseAuthConfig":
        """
        Derives audience and issuer from the project id if not provided.
        """
        if self.audience is None:
            self.audience = self.project_id
        if self.issuer is None:
            self.issuer = f"{ISSUER_PREFIX}{self.project_id}"
        return self

    @model_validator(mode="after")
    def validate_https(self) -> "FirebaseAuthConfig":
        """
        Ensures that provider URLs use HTTPS, unless strictly opted out for local dev (e.g. the auth emulator).
        """
        if self.unsafe_local_dev:
            return self

        for name in ("token_url", "public_keys_url", "issuer"):
            value = getattr(self, name)
            if value and value.startswith("http://"):
                raise ValueError(
                    f"HTTPS is required for '{name}'. Set 'unsafe_local_dev=True' only for local testing."
                )
        return self
