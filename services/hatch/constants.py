"""Constants shared across the hatch service modules."""

from __future__ import annotations

GITHUB_ORG = "vellum-ai"
GITHUB_REPO = f"{GITHUB_ORG}/vellum-assistant"
GITHUB_API_ROOT = "https://api.github.com"
API_URL = f"{GITHUB_API_ROOT}/repos/{GITHUB_REPO}/releases/latest"
GITHUB_ACCEPT = "application/vnd.github+json"

ASSISTANT_COMPONENT = "assistant"
GATEWAY_COMPONENT = "gateway"
REQUIRED_COMPONENTS = (ASSISTANT_COMPONENT, GATEWAY_COMPONENT)

MAX_DOWNLOAD_ATTEMPTS = 3
INITIAL_BACKOFF_SECONDS = 2.0
TRANSIENT_STATUS_CODES = frozenset({502, 503, 504})
DOWNLOAD_TIMEOUT_SECONDS = 60.0

MAX_ARCHIVE_TOTAL_BYTES = 1024 * 1024 * 1024  # 1 GiB
MAX_ARCHIVE_FILE_SIZE = 500 * 1024 * 1024  # 500 MiB per file
MAX_ARCHIVE_ENTRIES = 50000
MAX_COMPRESSION_RATIO = 100  # Uncompressed vs compressed bytes

INSTALL_MANIFEST_NAME = ".release.json"
STAGING_MARKER = ".staging-"
PREVIOUS_MARKER = ".previous-"

JWT_ISSUED_AT_SKEW_SECONDS = 60
JWT_LIFETIME_SECONDS = 10 * 60

APP_ID_ENV = "GITHUB_APP_ID"
PRIVATE_KEY_ENV = "GITHUB_PRIVATE_KEY"

SOURCE_CHECKOUT = "checkout"

BOOTSTRAP_SCRIPT_RESOURCE = "bootstrap.sh"
