"""Representation of a chart descriptor (Chart.yaml).

The descriptor is read once at the start of a run, its `version` and
`appVersion` are rewritten, and it is persisted back before packaging. All
other keys, including ones not modelled here, are written back unchanged.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from .exceptions import ChartDescriptorError

__all__ = [
    "CHART_FILE",
    "ChartDescriptor",
    "ChartDependency",
    "ChartMaintainer",
    "read_chart",
    "write_chart",
]

_LOGGER = logging.getLogger(__name__)

CHART_FILE = "Chart.yaml"


def _optional_str(value: Any) -> str | None:
    """Return YAML scalars such as `1.0` as strings."""
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class ChartMaintainer:
    """A maintainer listed in the descriptor."""

    name: str
    email: str | None = None
    url: str | None = None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ChartMaintainer":
        """Parse a maintainer entry."""
        return cls(
            name=str(doc.get("name", "")),
            email=_optional_str(doc.get("email")),
            url=_optional_str(doc.get("url")),
        )


@dataclass(frozen=True)
class ChartDependency:
    """A dependency declared in the descriptor."""

    name: str
    version: str | None = None
    repository: str | None = None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ChartDependency":
        """Parse a dependency entry."""
        return cls(
            name=str(doc.get("name", "")),
            version=_optional_str(doc.get("version")),
            repository=_optional_str(doc.get("repository")),
        )


@dataclass
class ChartDescriptor:
    """The metadata file of a chart."""

    name: str
    """The name of the chart."""

    version: str | None = None
    """The chart version, rewritten before packaging."""

    app_version: str | None = None
    """The version of the packaged application, rewritten before packaging."""

    description: str | None = None

    api_version: str | None = None

    icon: str | None = None

    home: str | None = None

    maintainers: list[ChartMaintainer] = field(default_factory=list)

    dependencies: list[ChartDependency] = field(default_factory=list)

    doc: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    """The document as read from disk, used to preserve unmodelled keys."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ChartDescriptor":
        """Parse a ChartDescriptor from a decoded Chart.yaml document."""
        if not (name := doc.get("name")):
            raise ChartDescriptorError(f"Invalid {CHART_FILE} missing name: {doc}")
        return cls(
            name=str(name),
            version=_optional_str(doc.get("version")),
            app_version=_optional_str(doc.get("appVersion")),
            description=_optional_str(doc.get("description")),
            api_version=_optional_str(doc.get("apiVersion")),
            icon=_optional_str(doc.get("icon")),
            home=_optional_str(doc.get("home")),
            maintainers=[
                ChartMaintainer.parse_doc(m) for m in doc.get("maintainers") or []
            ],
            dependencies=[
                ChartDependency.parse_doc(d) for d in doc.get("dependencies") or []
            ],
            doc=dict(doc),
        )

    def to_doc(self) -> dict[str, Any]:
        """Return the document to persist, carrying the rewritten versions."""
        doc = dict(self.doc)
        doc["name"] = self.name
        if self.version is not None:
            doc["version"] = self.version
        if self.app_version is not None:
            doc["appVersion"] = self.app_version
        return doc

    def yaml(self) -> str:
        """Return the YAML representation written to disk."""
        return yaml.dump(self.to_doc(), sort_keys=False)


def parse_chart(content: str) -> ChartDescriptor:
    """Parse the contents of a Chart.yaml file."""
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ChartDescriptorError(f"{CHART_FILE} failed to parse as yaml: {err}") from err
    if not isinstance(doc, dict):
        raise ChartDescriptorError(
            f"{CHART_FILE} was not a dictionary: {type(doc)}: {doc}"
        )
    return ChartDescriptor.parse_doc(doc)


async def read_chart(chart_dir: Path) -> ChartDescriptor:
    """Return the descriptor of the chart in the specified directory."""
    chart_file = chart_dir / CHART_FILE
    try:
        async with aiofiles.open(str(chart_file)) as chart_fd:
            content = await chart_fd.read()
    except OSError as err:
        raise ChartDescriptorError(f"Unable to read {chart_file}: {err}") from err
    return parse_chart(content)


async def write_chart(chart_dir: Path, descriptor: ChartDescriptor) -> None:
    """Persist the descriptor to the Chart.yaml in the specified directory."""
    chart_file = chart_dir / CHART_FILE
    _LOGGER.debug(
        "Writing %s with version=%s appVersion=%s",
        chart_file,
        descriptor.version,
        descriptor.app_version,
    )
    async with aiofiles.open(str(chart_file), mode="w") as chart_fd:
        await chart_fd.write(descriptor.yaml())
