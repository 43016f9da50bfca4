"""Release provider implementations."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Protocol

from services.hatch.constants import API_URL, GITHUB_ACCEPT
from services.hatch.downloader import Downloader
from services.hatch.models import Artifact, ArtifactNotFoundError, Release, ResolutionError


_LOGGER = logging.getLogger(__name__)


class ReleaseProvider(Protocol):
    """Protocol describing release metadata providers."""

    def fetch_latest(self) -> Release:
        """Return the newest published release."""

    def fetch_artifact(self, artifact: Artifact) -> bytes:
        """Return the archive payload for ``artifact``."""


class GitHubReleaseProvider:
    """Fetch release metadata from the GitHub Releases API."""

    def __init__(self, downloader: Downloader, api_url: str = API_URL) -> None:
        self._downloader = downloader
        self._api_url = api_url

    def fetch_latest(self) -> Release:
        _LOGGER.info("Querying latest release from %s", self._api_url)
        data = self._downloader.fetch_json(self._api_url, headers={"Accept": GITHUB_ACCEPT})
        if not isinstance(data, dict):
            raise ResolutionError("Release index returned an unexpected payload")
        if data.get("draft"):
            raise ResolutionError("Latest release is still a draft")

        tag = str(data.get("tag_name") or data.get("name") or "").strip()
        if not tag:
            raise ResolutionError("Latest release has no tag")

        artifacts = tuple(self._build_artifacts(data.get("assets") or []))
        _LOGGER.info("Resolved release %s with %s artifacts", tag, len(artifacts))
        return Release(tag=tag, artifacts=artifacts, notes=_clean_release_notes(data.get("body")))

    def fetch_artifact(self, artifact: Artifact) -> bytes:
        if artifact.download_url is None:
            raise ResolutionError(f"Artifact {artifact.name} is missing a download URL")
        _LOGGER.info("Downloading %s from %s", artifact.name, artifact.download_url)
        return self._downloader.download(artifact.download_url)

    def _build_artifacts(self, assets: Iterable[object]) -> Iterable[Artifact]:
        for asset in assets:
            if not isinstance(asset, dict):
                continue
            name = str(asset.get("name") or "").strip()
            url = asset.get("browser_download_url")
            if not name or not isinstance(url, str) or not url.strip():
                _LOGGER.debug("Skipping release asset without name or URL: %s", asset)
                continue
            size = asset.get("size")
            yield Artifact(
                name=name,
                download_url=url.strip(),
                size=size if isinstance(size, int) else None,
            )


class LocalFolderReleaseProvider:
    """Serve release metadata and archives from a local directory."""

    def __init__(self, folder: Path) -> None:
        self._folder = Path(folder)

    def fetch_latest(self) -> Release:
        metadata_path = self._folder / "release.json"
        try:
            data = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ResolutionError(f"Failed to read local release metadata: {exc}") from exc

        tag = str(data.get("tag") or data.get("version") or "").strip()
        if not tag:
            raise ResolutionError(f"Local release metadata at {metadata_path} has no tag")

        artifacts: list[Artifact] = []
        for name in data.get("artifacts") or []:
            name = str(name).strip()
            asset_path = self._folder / name
            if not name or not asset_path.is_file():
                _LOGGER.debug("Local artifact missing: %s", asset_path)
                continue
            artifacts.append(Artifact(name=name, source_path=asset_path, size=asset_path.stat().st_size))

        _LOGGER.info("Local release %s supplies %s artifacts", tag, len(artifacts))
        return Release(
            tag=tag,
            artifacts=tuple(artifacts),
            notes=_clean_release_notes(data.get("release_notes") or data.get("notes")),
        )

    def fetch_artifact(self, artifact: Artifact) -> bytes:
        if artifact.source_path is None:
            raise ResolutionError(f"Artifact {artifact.name} has no local source")
        _LOGGER.info("Reading %s from local source %s", artifact.name, artifact.source_path)
        try:
            return artifact.source_path.read_bytes()
        except OSError as exc:
            raise ResolutionError(f"Failed to read local artifact {artifact.name}: {exc}") from exc


def find_artifact(release: Release, prefix: str) -> Artifact:
    """Return the first artifact in ``release`` whose name starts with ``prefix``."""

    matches = [artifact for artifact in release.artifacts if artifact.name.startswith(prefix)]
    if not matches:
        _LOGGER.error("Release %s has no artifact matching prefix %s", release.tag, prefix)
        raise ArtifactNotFoundError(prefix, release.tag)
    if len(matches) > 1:
        _LOGGER.warning(
            "Release %s has %s artifacts matching prefix %s; using %s and ignoring %s",
            release.tag,
            len(matches),
            prefix,
            matches[0].name,
            ", ".join(artifact.name for artifact in matches[1:]),
        )
    return matches[0]


def _clean_release_notes(raw: object) -> str | None:
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip()
    return cleaned or None
