"""GitHub App authentication for the private checkout source."""

from __future__ import annotations

import base64
import json
import logging
import time
from typing import Callable

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from services.hatch.constants import (
    GITHUB_ACCEPT,
    GITHUB_API_ROOT,
    JWT_ISSUED_AT_SKEW_SECONDS,
    JWT_LIFETIME_SECONDS,
)
from services.hatch.downloader import Downloader
from services.hatch.models import (
    AuthenticationError,
    ConfigurationError,
    PermanentDownloadError,
)


_LOGGER = logging.getLogger(__name__)

__all__ = ["GitHubAppAuthenticator", "create_app_jwt"]


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _encode_segment(data: dict) -> str:
    return _base64url(json.dumps(data, separators=(",", ":")).encode("utf-8"))


def create_app_jwt(app_id: str, private_key_pem: str, now: int | None = None) -> str:
    """Return an RS256-signed JWT identifying the GitHub App ``app_id``."""

    issued = int(time.time()) if now is None else now
    header = {"alg": "RS256", "typ": "JWT"}
    payload = {
        "iat": issued - JWT_ISSUED_AT_SKEW_SECONDS,
        "exp": issued + JWT_LIFETIME_SECONDS,
        "iss": app_id,
    }
    signing_input = f"{_encode_segment(header)}.{_encode_segment(payload)}"

    try:
        private_key = serialization.load_pem_private_key(
            private_key_pem.encode("utf-8"), password=None
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError(f"GitHub App private key could not be loaded: {exc}") from exc
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise ConfigurationError("GitHub App private key must be an RSA key")

    signature = private_key.sign(
        signing_input.encode("ascii"),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    return f"{signing_input}.{_base64url(signature)}"


class GitHubAppAuthenticator:
    """Exchange an app JWT for a repository-scoped installation token."""

    def __init__(
        self,
        downloader: Downloader,
        *,
        app_id: str,
        private_key: str,
        organization: str,
        repository: str,
        api_root: str = GITHUB_API_ROOT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._downloader = downloader
        self._app_id = app_id
        self._private_key = private_key
        self._organization = organization
        self._repository = repository
        self._api_root = api_root.rstrip("/")
        self._clock = clock

    def installation_token(self) -> str:
        _LOGGER.info("Generating GitHub App token")
        jwt = create_app_jwt(self._app_id, self._private_key, int(self._clock()))
        headers = {"Authorization": f"Bearer {jwt}", "Accept": GITHUB_ACCEPT}

        installation_id = self._find_installation(headers)
        url = f"{self._api_root}/app/installations/{installation_id}/access_tokens"
        body = json.dumps({"repositories": [self._repository]}).encode("utf-8")
        try:
            data = self._downloader.fetch_json(url, headers=headers, data=body)
        except PermanentDownloadError as exc:
            raise AuthenticationError(
                f"Failed to create installation token: HTTP {exc.status}", exc.status
            ) from exc

        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthenticationError("Installation token response did not include a token")
        _LOGGER.info("Obtained installation token scoped to %s", self._repository)
        return token

    def _find_installation(self, headers: dict[str, str]) -> int:
        url = f"{self._api_root}/app/installations"
        try:
            installations = self._downloader.fetch_json(url, headers=headers)
        except PermanentDownloadError as exc:
            raise AuthenticationError(
                f"Failed to list installations: HTTP {exc.status}", exc.status
            ) from exc

        for installation in installations if isinstance(installations, list) else []:
            account = installation.get("account") if isinstance(installation, dict) else None
            if isinstance(account, dict) and account.get("login") == self._organization:
                _LOGGER.debug("Using installation %s for %s", installation.get("id"), self._organization)
                return int(installation["id"])

        raise ConfigurationError(
            f'No GitHub App installation found for the "{self._organization}" organization'
        )
