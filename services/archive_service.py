# ============================================================================
# ARCHIVE SERVICE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Service - Alveolus archive reading and per-run cache
# PURPOSE: Load manifests and descriptors bundled in directories or zips
# ============================================================================
"""
Archive Service

An alveolus archive is a directory, or a zip/jar file, laid out as:

    kubehive/manifest.json
    kubehive/kubernetes/<descriptor>.yaml
    kubehive/kubernetes/<descriptor>.json
    kubehive/kubernetes/<descriptor>.yaml.j2

Archives referenced by coordinates (group:artifact:version) are located
through an ArtifactResolver. The default one only looks into the local
repository layout, it never downloads.

The ArchiveCache is created per run: a location is read at most once, even
when several dependency branches request it concurrently.
"""

import asyncio
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from core.config import get_defaults
from core.errors import ConfigurationError
from core.logging import ComponentType, get_logger
from core.models import Manifest
from services.manifest_service import MANIFEST_NAME, ManifestService

logger = get_logger(__name__, ComponentType.ARCHIVE)

DESCRIPTOR_EXTENSIONS = (".yaml", ".yml", ".json", ".j2")


@dataclass(frozen=True)
class Archive:
    """Manifest and descriptor contents (keyed by archive path) of an archive."""
    manifest: Manifest
    descriptors: Dict[str, str] = field(default_factory=dict)
    location: Optional[str] = None


# ============================================================================
# ARTIFACT RESOLUTION
# ============================================================================

class ArtifactResolver(ABC):
    """Locates the archive file of artifact coordinates."""

    @abstractmethod
    def resolve(self, coordinates: str) -> Path:
        """
        Find the local file of an artifact.

        Raises:
            ConfigurationError: If the artifact can't be found
        """
        pass


class LocalArtifactResolver(ArtifactResolver):
    """
    Resolves group:artifact:version[:type[:classifier]] against a local
    repository (maven layout).
    """

    def __init__(self, repository: Optional[str] = None):
        self.repository = Path(repository or get_defaults().resolver.local_repository).expanduser()

    def resolve(self, coordinates: str) -> Path:
        segments = coordinates.split(":")
        if len(segments) < 3:
            raise ConfigurationError(f"Invalid artifact coordinates: '{coordinates}'")

        group, artifact, version = segments[0], segments[1], segments[2]
        type_ = segments[3] if len(segments) > 3 and segments[3] else "jar"
        classifier = f"-{segments[4]}" if len(segments) > 4 and segments[4] else ""

        path = (
            self.repository.joinpath(*group.split("."))
            / artifact / version / f"{artifact}-{version}{classifier}.{type_}"
        )
        if not path.is_file():
            raise ConfigurationError(f"Artifact '{coordinates}' not found (looked up {path})")
        return path


# ============================================================================
# READER
# ============================================================================

class ArchiveReader:
    """Reads directory and zip archives."""

    def __init__(self, manifest_service: Optional[ManifestService] = None):
        self.manifest_service = manifest_service or ManifestService()
        self.prefix = self.manifest_service.prefix

    @property
    def descriptors_prefix(self) -> str:
        return f"{self.prefix}/kubernetes/"

    def read(self, location: Path) -> Archive:
        """
        Read an archive.

        Args:
            location: Directory or zip file

        Raises:
            ConfigurationError: If the archive has no manifest
        """
        logger.debug(f"Reading {location}")
        if location.is_dir():
            return self._read_directory(location)
        if zipfile.is_zipfile(location):
            return self._read_zip(location)
        raise ConfigurationError(f"'{location}' is neither a directory nor a zip archive")

    def _read_directory(self, root: Path) -> Archive:
        manifest_path = root / self.prefix / MANIFEST_NAME
        if not manifest_path.is_file():
            raise ConfigurationError(f"No '{manifest_path}' found")

        manifest = self.manifest_service.parse(manifest_path.read_text(encoding="utf-8"), str(manifest_path))
        descriptors = {}
        descriptors_root = root / self.prefix / "kubernetes"
        if descriptors_root.is_dir():
            for file in sorted(descriptors_root.rglob("*")):
                if file.is_file() and file.name.endswith(DESCRIPTOR_EXTENSIONS):
                    name = file.relative_to(root).as_posix()
                    descriptors[name] = file.read_text(encoding="utf-8")
        return Archive(manifest=manifest, descriptors=descriptors, location=str(root))

    def _read_zip(self, path: Path) -> Archive:
        manifest_entry = f"{self.prefix}/{MANIFEST_NAME}"
        with zipfile.ZipFile(path) as archive:
            try:
                manifest_text = archive.read(manifest_entry).decode("utf-8")
            except KeyError as e:
                raise ConfigurationError(f"No {MANIFEST_NAME} in {path}") from e
            manifest = self.manifest_service.parse(manifest_text, f"{path}!{manifest_entry}")
            descriptors = {
                info.filename: archive.read(info).decode("utf-8")
                for info in archive.infolist()
                if not info.is_dir() and info.filename.startswith(self.descriptors_prefix)
            }
        return Archive(manifest=manifest, descriptors=descriptors, location=str(path))


# ============================================================================
# CACHE
# ============================================================================

class ArchiveCache:
    """
    Per-run archive memoization.

    One task per location: concurrent callers share the same read, and a
    failed read fails every caller the same way.
    """

    def __init__(self, reader: Optional[ArchiveReader] = None, resolver: Optional[ArtifactResolver] = None):
        self.reader = reader or ArchiveReader()
        self.resolver = resolver or LocalArtifactResolver()
        self._tasks: Dict[str, asyncio.Task] = {}

    async def load_archive(self, location: str, execution_id: Optional[str] = None) -> Archive:
        """
        Load (once) the archive at a location.

        Args:
            location: Local path or artifact coordinates
            execution_id: Current execution id (logging)

        Returns:
            Archive
        """
        task = self._tasks.get(location)
        if task is None:
            task = asyncio.ensure_future(self._load(location, execution_id))
            self._tasks[location] = task
        # a cancelled caller must not cancel the read shared with others
        return await asyncio.shield(task)

    async def _load(self, location: str, execution_id: Optional[str]) -> Archive:
        loop = asyncio.get_running_loop()
        local = Path(location).expanduser()
        if not local.exists():
            local = await loop.run_in_executor(None, self.resolver.resolve, location)
        logger.info(f"Loading archive {location} (run {execution_id})")
        return await loop.run_in_executor(None, self.reader.read, local)

    def __len__(self) -> int:
        return len(self._tasks)


__all__ = [
    "Archive",
    "ArchiveCache",
    "ArchiveReader",
    "ArtifactResolver",
    "LocalArtifactResolver",
]
