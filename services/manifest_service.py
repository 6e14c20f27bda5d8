# ============================================================================
# MANIFEST SERVICE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Service - Manifest reading, discovery and requirement gates
# PURPOSE: Load manifests from text, files and resource roots
# ============================================================================
"""
Manifest Service

Reads manifest documents (JSON or YAML) into Manifest models:
1. Interpolates the raw text with the configuration lookup. Unknown
   placeholders are kept as written so descriptor interpolation can
   resolve them later with the alveolus placeholders.
2. Unwraps an optional top level `kubehive` object.
3. Validates the document (pydantic) and checks the version requirements.

Visible manifests are the `kubehive/manifest.json` files found under the
configured resource roots. They back dependency lookups without location.

Usage:
    service = ManifestService()
    manifest = service.read_manifest("path/to/project")
    root = service.find_alveolus_in_visible("com.company:app:1.0.0")
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence

import yaml
from pydantic import ValidationError

from __version__ import __version__
from core.config import get_defaults
from core.errors import ConfigurationError
from core.models import Manifest, ManifestAndAlveolus, Requirement
from orchestrator.engine.substitutor import Substitutor
from services.placeholders import ConfigLookup

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"

_SNAPSHOT_SUFFIX = re.compile(r"(-SNAPSHOT|\.dev\d*)$")


# ============================================================================
# REQUIREMENTS
# ============================================================================

def _sanitize_version(version: str) -> str:
    return _SNAPSHOT_SUFFIX.sub("", version.strip())


def compare_version(expected: str, actual: str, expect_negative: Optional[bool]) -> bool:
    """
    Compare a version pattern to the running version, segment by segment.

    `*` segments match anything and a pattern shorter than the version
    matches the missing segments.

    Args:
        expected: Version pattern (ex: 1.*.0)
        actual: Running version
        expect_negative: True for a minimum (expected <= actual), False for
            a maximum (expected >= actual), None for an exact match

    Returns:
        True if the version satisfies the pattern
    """
    expected_segments = _sanitize_version(expected).split(".")
    actual_segments = _sanitize_version(actual).split(".")
    for exp, act in zip(expected_segments, actual_segments):
        if exp == "*" or exp == act:
            continue
        try:
            comp = int(exp) - int(act)
        except ValueError:
            return False
        if comp == 0:
            continue
        if expect_negative is None:
            return False
        return comp < 0 if expect_negative else comp > 0
    return len(expected_segments) <= len(actual_segments)


def check_requirements(manifest: Manifest, version: str = __version__) -> None:
    """
    Validate the manifest requirements against a version.

    Raises:
        ConfigurationError: If a requirement is not met
    """
    for requirement in manifest.requirements:
        _check_requirement(requirement, version)


def _check_requirement(requirement: Requirement, version: str) -> None:
    minimum = requirement.min_bundle_version
    if minimum and minimum.strip() and not compare_version(minimum, version, True):
        raise ConfigurationError(f"Invalid kubehive version: {version} expected-min={minimum}")

    maximum = requirement.max_bundle_version
    if maximum and maximum.strip() and not compare_version(maximum, version, False):
        raise ConfigurationError(f"Invalid kubehive version: {version} expected-max={maximum}")

    for forbidden in requirement.forbidden_versions:
        if compare_version(forbidden, version, None):
            raise ConfigurationError(
                f"Invalid kubehive version: {version} forbidden={requirement.forbidden_versions}"
            )


# ============================================================================
# SERVICE
# ============================================================================

class ManifestService:
    """Reads, validates and discovers manifests."""

    def __init__(
        self,
        lookup: Optional[ConfigLookup] = None,
        resource_roots: Optional[Sequence[str]] = None,
        version: str = __version__,
    ):
        defaults = get_defaults().resolver
        self.lookup = lookup or ConfigLookup()
        self.resource_roots = list(resource_roots if resource_roots is not None else defaults.resource_roots)
        self.prefix = defaults.resource_prefix
        self.version = version
        self._substitutor = Substitutor(self._keep_unknown, unescape=False)
        self._visible: Optional[List[Manifest]] = None

    def _keep_unknown(self, key: str, default: Optional[str]) -> str:
        value = self.lookup(key, default)
        if value is not None:
            return value
        return "{{" + key + (":-" + default if default is not None else "") + "}}"

    def parse(self, text: str, source: str = "<inline>") -> Manifest:
        """
        Parse manifest text (JSON or YAML).

        Raises:
            ConfigurationError: If the text is not a valid manifest or a
                requirement is not met
        """
        interpolated = self._substitutor.replace(text)
        try:
            data = yaml.safe_load(interpolated)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid manifest {source}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid manifest {source}: expected an object")
        if set(data.keys()) == {self.prefix} and isinstance(data[self.prefix], dict):
            data = data[self.prefix]

        try:
            manifest = Manifest.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid manifest {source}: {e}") from e

        check_requirements(manifest, self.version)
        logger.debug(f"Read manifest {source} ({len(manifest.alveoli)} alveoli)")
        return manifest

    def read_manifest(self, source: str) -> Manifest:
        """
        Read a manifest from inline text, a file or a project directory.

        Args:
            source: Inline JSON/YAML, a manifest file, or a directory
                containing kubehive/manifest.json

        Raises:
            ConfigurationError: If no manifest can be found
        """
        stripped = source.strip()
        if stripped.startswith("{") or "\n" in stripped:
            return self.parse(source)

        path = Path(stripped).expanduser()
        if path.is_dir():
            path = path / self.prefix / MANIFEST_NAME
        if not path.is_file():
            raise ConfigurationError(f"No manifest found at '{source}'")
        return self.parse(path.read_text(encoding="utf-8"), str(path))

    def visible_manifests(self) -> List[Manifest]:
        """Manifests found under the resource roots (read once)."""
        if self._visible is None:
            manifests = []
            for root in self.resource_roots:
                candidate = Path(root) / self.prefix / MANIFEST_NAME
                if candidate.is_file():
                    manifests.append(self.parse(candidate.read_text(encoding="utf-8"), str(candidate)))
            self._visible = manifests
        return self._visible

    def find_alveolus_in_visible(self, name: str) -> Optional[ManifestAndAlveolus]:
        """First visible manifest declaring the alveolus, if any."""
        for manifest in self.visible_manifests():
            alveolus = manifest.find_alveolus(name)
            if alveolus is not None:
                return ManifestAndAlveolus(manifest=manifest, alveolus=alveolus)
        return None

    def find_resource(self, path: str) -> Optional[Path]:
        """Location of a resource under the roots, if any."""
        for root in self.resource_roots:
            candidate = Path(root) / path
            if candidate.is_file():
                return candidate
        return None


__all__ = [
    "ManifestService",
    "check_requirements",
    "compare_version",
]
