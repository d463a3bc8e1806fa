"""Resolve the chart version and app version of a pipeline run.

The chart version comes from the first available source:
  - the first line of `params.version_file` when that file exists
  - `params.version`
  - the patch-incremented version found in the existing Chart.yaml

An explicitly requested version must satisfy `source.version_range` when
one is configured. The resolved version is computed once per run and is
the only version used afterwards.
"""

from dataclasses import dataclass
import logging
from pathlib import Path
import re

import aiofiles
from aiofiles.ospath import isfile
import nodesemver

from .chart import ChartDescriptor
from .exceptions import VersionMissingError, VersionRangeError

__all__ = [
    "ResolvedVersion",
    "parse_version_parts",
    "increment_patch",
    "check_version_range",
    "read_version_file",
    "requested_version",
    "resolve_version",
]

_LOGGER = logging.getLogger(__name__)

_LEADING_DIGITS = re.compile(r"^\s*(\d+)")


@dataclass(frozen=True)
class ResolvedVersion:
    """The versions stamped onto the chart for this run."""

    version: str
    """The chart version."""

    app_version: str | None
    """The app version, or None to leave the descriptor's value untouched."""

    incremented: bool = False
    """True when the version was derived from the existing descriptor."""


def _to_int(component: str | None) -> int:
    if component is None or not (match := _LEADING_DIGITS.match(component)):
        return 0
    return int(match.group(1))


def parse_version_parts(version: str | None) -> tuple[int, int, int]:
    """Split a version into major, minor and patch numbers.

    Components that are missing or not numeric are treated as 0, so that
    charts carrying placeholder versions can still be published.
    """
    parts: list[str | None] = list((version or "").split("."))
    parts.extend([None] * (3 - len(parts)))
    return (_to_int(parts[0]), _to_int(parts[1]), _to_int(parts[2]))


def increment_patch(version: str | None) -> str:
    """Return the version with its patch number incremented."""
    major, minor, patch = parse_version_parts(version)
    return f"{major}.{minor}.{patch + 1}"


def check_version_range(version: str, version_range: str) -> None:
    """Raise VersionRangeError unless the version satisfies the range."""
    try:
        satisfied = nodesemver.satisfies(version, version_range)
    except ValueError:
        satisfied = False
    if not satisfied:
        raise VersionRangeError(version, version_range)


async def read_version_file(version_file: Path) -> str | None:
    """Return the trimmed first line of the version file, if it exists."""
    if not await isfile(version_file):
        _LOGGER.info("Version file %s does not exist, ignoring", version_file)
        return None
    async with aiofiles.open(str(version_file)) as version_fd:
        first_line = await version_fd.readline()
    if not (value := first_line.strip()):
        _LOGGER.warning("Version file %s is empty, ignoring", version_file)
        return None
    return value


async def requested_version(
    *,
    version: str | None = None,
    version_file: Path | None = None,
    version_range: str | None = None,
) -> str | None:
    """Return the explicitly requested version, validated against the range.

    The first line of an existing version file overrides `version`. Returns
    None when no version was requested at all.
    """
    if version_file is not None:
        if (file_version := await read_version_file(version_file)) is not None:
            _LOGGER.info("Using version %s from %s", file_version, version_file)
            version = file_version
    if not version:
        return None
    if version_range:
        check_version_range(version, version_range)
    return version


def resolve_version(
    descriptor: ChartDescriptor,
    requested: str | None,
    *,
    app_version: str | None = None,
    set_app_version: bool = True,
) -> ResolvedVersion:
    """Determine the version and app version to publish the chart with."""
    incremented = False
    if requested:
        version = requested
    else:
        base = descriptor.app_version or descriptor.version
        if base is None:
            raise VersionMissingError(
                "No version or version file passed and the chart has no version to increment"
            )
        version = increment_patch(base)
        incremented = True
        _LOGGER.info(
            "No version or version file passed, incrementing %s to %s", base, version
        )

    if app_version is None and set_app_version:
        app_version = version
    return ResolvedVersion(
        version=version, app_version=app_version, incremented=incremented
    )
