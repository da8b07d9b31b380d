"""Resolve and validate the package version."""

from __future__ import annotations

import os
import re
from importlib import metadata
from pathlib import Path

from packaging.version import InvalidVersion, Version

_PACKAGE_NAME = "xdgm"
_RELEASE_OVERRIDE_ENV = "PYTHON_SEMANTIC_RELEASE_VERSION"
_CHANGELOG_HEADING = re.compile(r"^## v(?P<version>\d+\.\d+\.\d+)\b")


def _version_from_changelog() -> str:
    """Return the newest release heading found in ``CHANGELOG.md``.

    Used from a source checkout where no distribution metadata exists yet.
    """

    resolved = Path(__file__).resolve()
    for parent in resolved.parents[1:3]:
        changelog = parent / "CHANGELOG.md"
        if not changelog.is_file():
            continue
        for line in changelog.read_text(encoding="utf-8").splitlines():
            match = _CHANGELOG_HEADING.match(line)
            if match:
                return match.group("version")

    raise RuntimeError(
        f"Unable to determine the {_PACKAGE_NAME!r} version from package metadata or "
        "repository sources."
    )


def _load_version() -> str:
    """Return the package version, enforcing ``MAJOR.MINOR.PATCH``."""

    raw_version = os.environ.get(_RELEASE_OVERRIDE_ENV)
    if not raw_version:
        try:
            raw_version = metadata.version(_PACKAGE_NAME)
        except metadata.PackageNotFoundError:
            raw_version = _version_from_changelog()

    try:
        parsed = Version(raw_version)
    except InvalidVersion as exc:
        raise RuntimeError(
            f"Invalid version string for {_PACKAGE_NAME!r}: "
            f"{raw_version!r}. Expected a semantic version."
        ) from exc

    if len(parsed.release) != 3:
        raise RuntimeError(
            f"The {_PACKAGE_NAME!r} version must follow the MAJOR.MINOR.PATCH format. "
            f"Found: {raw_version!r}."
        )

    return raw_version


__version__ = _load_version()

__all__ = ["__version__"]
