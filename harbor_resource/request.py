"""Request and response envelopes exchanged with the CI system.

The `out` step receives a single JSON document on stdin:

```json
{
  "source": {"server_url": "https://harbor.example.com/", "project": "library",
             "chart_name": "podinfo"},
  "params": {"chart": "repo/charts/podinfo", "version": "1.2.3"}
}
```

and answers with a single JSON document on stdout describing the version
that was published.
"""

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .exceptions import InputException

__all__ = [
    "Auth",
    "Source",
    "Params",
    "OutRequest",
    "OutResponse",
    "VersionRef",
    "MetadataField",
    "read_request",
    "resolve_path",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class BaseEnvelope(DataClassDictMixin):
    """Base class for all envelope objects."""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class Auth:
    """Basic authentication credentials."""

    username: str
    password: str


@dataclass
class Source(BaseEnvelope):
    """Resource configuration shared by every step."""

    server_url: str
    """Base url of the registry, always ending with a slash."""

    project: str
    """The registry project holding the chart repository."""

    chart_name: str
    """Name of the chart in the registry."""

    version_range: str | None = None
    """Optional semver range every published version must satisfy."""

    basic_auth_username: str | None = None

    basic_auth_password: str | None = None

    def __post_init__(self) -> None:
        """Forgive a missing trailing slash on the server url."""
        if not self.server_url.endswith("/"):
            self.server_url = f"{self.server_url}/"

    @property
    def auth(self) -> Auth | None:
        """Return credentials when both username and password are configured."""
        if self.basic_auth_username and self.basic_auth_password:
            return Auth(
                username=self.basic_auth_username, password=self.basic_auth_password
            )
        return None


@dataclass
class Params(BaseEnvelope):
    """Parameters of the `out` step."""

    chart: str
    """Path to the chart directory."""

    sign: bool = False
    """Sign the packaged chart with a gpg key."""

    key_data: str | None = None
    """Inline ASCII armored private key used for signing."""

    key_file: str | None = None
    """Path to a private key file used for signing."""

    key_passphrase: str | None = None
    """Passphrase of the signing key."""

    version: str | None = None
    """Explicit chart version."""

    version_file: str | None = None
    """File whose first line overrides `version` when it exists."""

    app_version: str | None = None
    """Explicit app version."""

    set_app_version: bool = True
    """Use the chart version as app version when `app_version` is not set."""

    force: bool = False
    """Overwrite an existing chart version in the registry."""


@dataclass
class OutRequest(BaseEnvelope):
    """The request envelope of the `out` step."""

    source: Source
    params: Params


@dataclass
class VersionRef(BaseEnvelope):
    """Identifies a published chart version."""

    version: str
    digest: str


@dataclass
class MetadataField(BaseEnvelope):
    """A name/value pair shown alongside a version."""

    name: str
    value: str


@dataclass
class OutResponse(BaseEnvelope):
    """The response envelope of the `out` step."""

    version: VersionRef
    metadata: list[MetadataField] = field(default_factory=list)

    def json(self) -> str:
        """Serialize the response for stdout."""
        return json.dumps(self.to_dict())


def parse_request(doc: Any) -> OutRequest:
    """Parse a decoded JSON document into an OutRequest."""
    if not isinstance(doc, dict):
        raise InputException(f"Expected a JSON object on stdin, got {type(doc)}")
    try:
        return OutRequest.from_dict(doc)
    except (MissingField, InvalidFieldValue, TypeError, ValueError) as err:
        raise InputException(f"Invalid request: {err}") from err


def read_request(content: str) -> OutRequest:
    """Parse the raw JSON text read from stdin."""
    try:
        doc = json.loads(content)
    except json.JSONDecodeError as err:
        raise InputException(f"Unable to retrieve JSON data from stdin: {err}") from err
    request = parse_request(doc)
    _LOGGER.debug(
        "Request for chart %s in project %s at %s",
        request.source.chart_name,
        request.source.project,
        request.source.server_url,
    )
    return request


def resolve_path(base_dir: Path, value: str) -> Path:
    """Resolve a path from the request relative to the build directory."""
    path = Path(value)
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()
