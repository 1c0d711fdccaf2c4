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
Data models for the coreason-firebase package.
"""

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class Certificate(BaseModel):
    """
    Service-account credentials used to sign assertions.

    This model is frozen (immutable). The private key is a SecretStr so it never
    appears in logs or reprs.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    private_key: SecretStr = Field(..., description="PEM-encoded RSA private key.")
    client_email: str = Field(..., min_length=1, description="The service account's email, used as the issuer.")
    private_key_id: str | None = Field(
        default=None, description="Identifier of the private key. Sent as the assertion's 'kid' header when set."
    )


class TokenResponse(BaseModel):
    """
    Response from the OAuth2 token-exchange endpoint.

    Attributes:
        access_token (str): The access token issued by the authorization server.
        expires_in (int): The lifetime in seconds of the access token.
        token_type (str): The type of the token (e.g. "Bearer").
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    expires_in: int = Field(..., ge=0)
    token_type: str = "Bearer"

    def __repr__(self) -> str:
        return (
            f"TokenResponse(access_token='<REDACTED>', expires_in={self.expires_in!r}, token_type={self.token_type!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class AccessToken(BaseModel):
    """
    A cached bearer access token with its absolute expiry (epoch seconds).
    """

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "Bearer"
    expires_at: float

    def is_fresh(self, now: float, margin: float = 0.0) -> bool:
        return now < self.expires_at - margin

    def __repr__(self) -> str:
        # The token is a bearer credential and MUST be redacted
        return f"AccessToken(token='<REDACTED>', token_type={self.token_type!r}, expires_at={self.expires_at!r})"

    def __str__(self) -> str:
        return self.__repr__()


class PublicKeySet(BaseModel):
    """
    The provider's public signing keys, keyed by key id, with the absolute time the set goes stale.
    """

    model_config = ConfigDict(frozen=True)

    keys: dict[str, str] = Field(default_factory=dict, description="Key id to PEM certificate or public key.")
    expires_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def get(self, key_id: str) -> str | None:
        return self.keys.get(key_id)
