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
Firebase credential issuance and ID-token verification: signed service assertions,
cached access tokens, and ID tokens checked against the provider's rotating public keys.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .api import AuthAPIProtocol, HTTPAuthAPI, MemoryAuthAPI
from .assertion import AssertionBuilder, build_claims
from .certificate import (
    CertificateSource,
    EnvCertificateSource,
    ServiceAccountFileSource,
    StaticCertificateSource,
)
from .config import FirebaseAuthConfig
from .exceptions import (
    CoreasonFirebaseError,
    InvalidCertificateError,
    InvalidClaimsError,
    InvalidSignatureError,
    InvalidTokenError,
    MalformedTokenError,
    PublicKeyFetchError,
    TokenExchangeError,
    UnknownKeyIdError,
)
from .key_cache import KeyCache
from .manager import FirebaseAuth, FirebaseAuthAsync
from .models import AccessToken, Certificate, PublicKeySet, TokenResponse
from .token_cache import TokenCache
from .verifier import TokenVerifier

__all__ = [
    "AccessToken",
    "AssertionBuilder",
    "AuthAPIProtocol",
    "Certificate",
    "CertificateSource",
    "CoreasonFirebaseError",
    "EnvCertificateSource",
    "FirebaseAuth",
    "FirebaseAuthAsync",
    "FirebaseAuthConfig",
    "HTTPAuthAPI",
    "InvalidCertificateError",
    "InvalidClaimsError",
    "InvalidSignatureError",
    "InvalidTokenError",
    "KeyCache",
    "MalformedTokenError",
    "MemoryAuthAPI",
    "PublicKeyFetchError",
    "PublicKeySet",
    "ServiceAccountFileSource",
    "StaticCertificateSource",
    "TokenCache",
    "TokenExchangeError",
    "TokenResponse",
    "TokenVerifier",
    "UnknownKeyIdError",
    "build_claims",
]
