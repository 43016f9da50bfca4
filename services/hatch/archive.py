"""Archive handling helpers for provisioning release artifacts."""

from __future__ import annotations

import logging
import shutil
import tarfile
import zipfile
from pathlib import Path

from services.hatch import constants
from services.hatch.models import ExtractionError


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "extract_archive",
    "extract_tar_safely",
    "extract_zip_safely",
    "flatten_single_root",
    "resolve_entry_point",
]


def extract_archive(archive_path: Path, target_dir: Path) -> None:
    """Unpack ``archive_path`` into ``target_dir``, detecting the format by content."""

    _LOGGER.info("Extracting archive %s", archive_path.name)
    try:
        if zipfile.is_zipfile(archive_path):
            with zipfile.ZipFile(archive_path) as archive:
                extract_zip_safely(archive, target_dir)
        elif tarfile.is_tarfile(archive_path):
            with tarfile.open(archive_path) as archive:
                extract_tar_safely(archive, target_dir)
        else:
            raise ExtractionError(f"{archive_path.name} is not a zip or tar archive")
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as exc:
        raise ExtractionError(f"Failed to extract {archive_path.name}: {exc}") from exc
    _LOGGER.debug("Archive %s extracted to %s", archive_path.name, target_dir)


def _checked_destination(root: Path, name: str) -> Path:
    path = Path(name)
    if path.is_absolute():
        raise ExtractionError("Archive contained an absolute path entry")
    destination = (root / path).resolve()
    try:
        destination.relative_to(root)
    except ValueError:
        raise ExtractionError("Archive contained an unsafe relative path")
    return destination


class _Budget:
    def __init__(self) -> None:
        self.entries = 0
        self.total_bytes = 0

    def count_entry(self) -> None:
        self.entries += 1
        if self.entries > constants.MAX_ARCHIVE_ENTRIES:
            _LOGGER.error(
                "Archive entry count %s exceeded limit %s",
                self.entries,
                constants.MAX_ARCHIVE_ENTRIES,
            )
            raise ExtractionError("Archive contained too many entries")

    def count_file(self, name: str, size: int) -> None:
        if size > constants.MAX_ARCHIVE_FILE_SIZE:
            _LOGGER.error(
                "Archive member %s exceeded file size limit (%s > %s)",
                name,
                size,
                constants.MAX_ARCHIVE_FILE_SIZE,
            )
            raise ExtractionError("Archive contained an oversized file")
        self.total_bytes += size
        if self.total_bytes > constants.MAX_ARCHIVE_TOTAL_BYTES:
            _LOGGER.error(
                "Archive expanded to %s bytes which exceeds limit %s",
                self.total_bytes,
                constants.MAX_ARCHIVE_TOTAL_BYTES,
            )
            raise ExtractionError("Archive expanded beyond safe limits")


def extract_zip_safely(archive: zipfile.ZipFile, target_dir: Path) -> None:
    root = target_dir.resolve()
    budget = _Budget()
    for member in archive.infolist():
        name = member.filename
        if not name:
            continue
        budget.count_entry()
        destination = _checked_destination(root, name)
        if member.is_dir():
            destination.mkdir(parents=True, exist_ok=True)
            continue
        if member.compress_size == 0 and member.file_size > 0:
            _LOGGER.error("Archive member %s reported zero compression size", name)
            raise ExtractionError("Archive contained a suspiciously compressed file")
        if (
            member.compress_size > 0
            and member.file_size > member.compress_size * constants.MAX_COMPRESSION_RATIO
        ):
            _LOGGER.error(
                "Archive member %s exceeded compression ratio limit (%s > %s)",
                name,
                member.file_size,
                member.compress_size * constants.MAX_COMPRESSION_RATIO,
            )
            raise ExtractionError("Archive exceeded safe compression ratio")
        budget.count_file(name, member.file_size)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(member) as source, destination.open("wb") as target:
            shutil.copyfileobj(source, target)
        mode = (member.external_attr >> 16) & 0o777
        if mode:
            destination.chmod(mode)

    _LOGGER.info(
        "Extracted %s entries totalling %s bytes", budget.entries, budget.total_bytes
    )


def extract_tar_safely(archive: tarfile.TarFile, target_dir: Path) -> None:
    root = target_dir.resolve()
    budget = _Budget()
    members: list[tarfile.TarInfo] = []
    for member in archive.getmembers():
        budget.count_entry()
        _checked_destination(root, member.name)
        if member.issym() or member.islnk():
            link_base = root / Path(member.name).parent if member.issym() else root
            _checked_destination(link_base.resolve(), member.linkname)
        elif member.isfile():
            budget.count_file(member.name, member.size)
        elif not member.isdir():
            _LOGGER.debug("Skipping special archive member %s", member.name)
            continue
        members.append(member)

    archive.extractall(root, members=members, filter="data")
    _LOGGER.info(
        "Extracted %s entries totalling %s bytes", budget.entries, budget.total_bytes
    )


def flatten_single_root(directory: Path) -> None:
    """Hoist the contents of a lone top-level folder into ``directory``."""

    children = list(directory.iterdir())
    if len(children) != 1 or not children[0].is_dir() or children[0].is_symlink():
        return
    nested = children[0]
    _LOGGER.debug("Flattening archive root folder %s", nested.name)
    holding = directory / f".{nested.name}.flatten"
    nested.rename(holding)
    for child in holding.iterdir():
        child.rename(directory / child.name)
    holding.rmdir()


def resolve_entry_point(root: Path, entry_point: str) -> Path | None:
    normalised = entry_point.strip()
    if not normalised:
        return None
    components = [part for part in normalised.replace("\\", "/").split("/") if part and part != "."]
    candidate = root.joinpath(*components).resolve()
    root_resolved = root.resolve()
    try:
        candidate.relative_to(root_resolved)
    except ValueError:
        return None
    if candidate.exists():
        _LOGGER.debug("Located entry point candidate %s", candidate)
        return candidate
    return None
