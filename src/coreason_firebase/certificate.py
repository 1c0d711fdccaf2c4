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
Certificate sources: suppliers of the service account's private key and email.
"""

import json
from pathlib import Path
from typing import Protocol

from pydantic import SecretStr, ValidationError

from coreason_firebase.config import FirebaseAuthConfig
from coreason_firebase.exceptions import InvalidCertificateError
from coreason_firebase.models import Certificate


class CertificateSource(Protocol):
    """Protocol for anything that can supply a service-account certificate."""

    def load(self) -> Certificate:
        """
        Returns the current certificate.
        Raises InvalidCertificateError if it is unavailable.
        """
        ...


class StaticCertificateSource:
    """Always returns the certificate it was created with."""

    def __init__(self, certificate: Certificate) -> None:
        self.certificate = certificate

    def load(self) -> Certificate:
        return self.certificate


class ServiceAccountFileSource:
    """
    Reads a Google service-account JSON key file on every load, so a rotated
    file is picked up without restarting.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> Certificate:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise InvalidCertificateError(f"Cannot read service account file {self.path}: {e.strerror}") from e
        except json.JSONDecodeError as e:
            raise InvalidCertificateError(f"Service account file {self.path} is not valid JSON") from e

        if not isinstance(raw, dict):
            raise InvalidCertificateError(f"Service account file {self.path} must contain a JSON object")

        try:
            return Certificate(**raw)
        except ValidationError as e:
            missing = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            raise InvalidCertificateError(
                f"Service account file {self.path} is missing or has invalid fields: {', '.join(missing)}"
            ) from None


class EnvCertificateSource:
    """Builds the certificate from inline config values (COREASON_FIREBASE_PRIVATE_KEY etc.)."""

    def __init__(
        self,
        private_key: SecretStr | None,
        client_email: str | None,
        private_key_id: str | None = None,
    ) -> None:
        self.private_key = private_key
        self.client_email = client_email
        self.private_key_id = private_key_id

    def load(self) -> Certificate:
        if self.private_key is None or not self.client_email:
            raise InvalidCertificateError("No service account certificate configured")

        # Env vars commonly carry the PEM with escaped newlines
        pem = self.private_key.get_secret_value().replace("\\n", "\n")
        return Certificate(
            private_key=SecretStr(pem),
            client_email=self.client_email,
            private_key_id=self.private_key_id,
        )


def certificate_source_from_config(config: FirebaseAuthConfig) -> CertificateSource:
    """
    Selects the certificate source described by the configuration.

    A service account file takes precedence over inline values. With neither,
    the returned source raises InvalidCertificateError on load, so token
    verification still works without credentials.
    """
    if config.service_account_file is not None:
        return ServiceAccountFileSource(config.service_account_file)
    return EnvCertificateSource(config.private_key, config.client_email, config.private_key_id)
