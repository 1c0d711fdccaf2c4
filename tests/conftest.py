# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_firebase

import datetime
import time
from collections.abc import Callable
from typing import Any

import pytest
from authlib.jose import JsonWebKey, JsonWebToken
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID
from pydantic import SecretStr

from coreason_firebase.models import Certificate

PROJECT_ID = "demo-project"
ISSUER = f"https://securetoken.google.com/{PROJECT_ID}"
KEY_ID = "key-1"

TokenFactory = Callable[..., str]


@pytest.fixture(scope="session")
def signing_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def other_signing_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def private_key_pem(signing_key: Any) -> str:
    return signing_key.as_pem(is_private=True).decode("ascii")  # type: ignore[no-any-return]


@pytest.fixture(scope="session")
def public_key_pem(signing_key: Any) -> str:
    return signing_key.as_pem(is_private=False).decode("ascii")  # type: ignore[no-any-return]


@pytest.fixture(scope="session")
def x509_certificate_pem(signing_key: Any) -> str:
    """A self-signed X.509 certificate for the signing key, as served by the public-key endpoint."""
    private_key = signing_key.get_private_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "securetoken.system.gserviceaccount.com")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture
def certificate(private_key_pem: str) -> Certificate:
    return Certificate(private_key=SecretStr(private_key_pem), client_email="svc@project.iam")


@pytest.fixture
def id_token_claims() -> dict[str, Any]:
    now = int(time.time())
    return {
        "iss": ISSUER,
        "aud": PROJECT_ID,
        "auth_time": now - 60,
        "user_id": "O5dHhHaWzsgUdNo6jIeTrWykPVd2",
        "sub": "O5dHhHaWzsgUdNo6jIeTrWykPVd2",
        "iat": now - 60,
        "exp": now + 3600,
        "firebase": {"identities": {"phone": ["+16505553434"]}, "sign_in_provider": "phone"},
    }


@pytest.fixture
def make_id_token(signing_key: Any) -> TokenFactory:
    """Returns a helper that signs claims as an RS256 ID token."""

    def _make(claims: dict[str, Any], key: Any = None, kid: str | None = KEY_ID, alg: str = "RS256") -> str:
        header: dict[str, Any] = {"alg": alg, "typ": "JWT"}
        if kid is not None:
            header["kid"] = kid
        token: bytes = JsonWebToken([alg]).encode(header, dict(claims), key or signing_key)
        return token.decode("ascii")

    return _make
