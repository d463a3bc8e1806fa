"""Client for the chart repository API of a Harbor registry.

Uploading a chart is not retried: the registry either stores the archive or
tells us why it didn't. Indexing of an uploaded chart happens asynchronously
though, so the metadata of a chart may not be available right after the
upload. `poll_chart` fetches the metadata a fixed number of times with a
fixed delay between attempts before giving up.
"""

import asyncio
import base64
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField
import requests
from requests import Response, Session
from requests.exceptions import RequestException

from .exceptions import (
    FetchRetryExhaustedError,
    RegistryTransportError,
    UploadNotSavedError,
    UploadRejectedError,
    UploadStatusError,
    VersionMismatchError,
)
from .request import Source

__all__ = [
    "RegistryClient",
    "RegistryChartMetadata",
    "UploadResult",
    "FetchResult",
    "poll_chart",
]

_LOGGER = logging.getLogger(__name__)

HTTP_TIMEOUT = 30
FETCH_ATTEMPTS = 3
FETCH_DELAY = 5.0
UPLOAD_FIELD = "chart"


@dataclass
class RegistryChartMetadata(DataClassDictMixin):
    """Metadata of a chart version as indexed by the registry."""

    name: str
    version: str
    app_version: str | None = field(
        metadata=field_options(alias="appVersion"), default=None
    )
    description: str | None = None
    created: str | None = None
    digest: str | None = None

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True)
class UploadResult:
    """The registry's answer to a chart upload."""

    status: int
    reason: str | None = None
    saved: Any = None
    error: str | None = None

    @classmethod
    def from_response(cls, response: Response) -> "UploadResult":
        """Interpret an upload response."""
        body: Any = None
        if response.status_code == 201:
            try:
                body = response.json()
            except ValueError:
                _LOGGER.debug("Upload response is not JSON: %s", response.text)
        if not isinstance(body, dict):
            body = {}
        return cls(
            status=response.status_code,
            reason=response.reason,
            saved=body.get("saved"),
            error=body.get("error"),
        )

    @property
    def success(self) -> bool:
        """True when the registry stored the chart."""
        return self.status == 201 and self.error is None and self.saved is True

    def raise_for_failure(self) -> None:
        """Raise the exception describing why the upload failed."""
        if self.status != 201:
            raise UploadStatusError(self.status, self.reason)
        if self.error is not None:
            raise UploadRejectedError(self.error)
        if self.saved is not True:
            raise UploadNotSavedError(self.saved)


@dataclass(frozen=True)
class FetchResult:
    """The outcome of a single metadata request."""

    status: int
    metadata: RegistryChartMetadata | None = None
    body: str = ""

    @property
    def ok(self) -> bool:
        """True when the chart was found."""
        return self.metadata is not None


def _parse_metadata(response: Response) -> RegistryChartMetadata | None:
    try:
        doc = response.json()
    except ValueError:
        _LOGGER.debug("Chart response is not JSON: %s", response.text)
        return None
    if not isinstance(doc, dict) or not isinstance(doc.get("metadata"), dict):
        return None
    try:
        return RegistryChartMetadata.from_dict(doc["metadata"])
    except (MissingField, InvalidFieldValue) as err:
        _LOGGER.debug("Chart response has invalid metadata: %s", err)
        return None


class RegistryClient:
    """Talks to the chart repository of one registry project."""

    def __init__(
        self,
        source: Source,
        session: Session | None = None,
        timeout: int = HTTP_TIMEOUT,
    ) -> None:
        """Initialize RegistryClient."""
        self._source = source
        self._session = session or requests.Session()
        self._timeout = timeout

    @property
    def charts_url(self) -> str:
        """Url of the chart collection of the project."""
        return (
            f"{self._source.server_url}api/chartrepo/{self._source.project}/charts"
        )

    def chart_url(self, name: str, version: str) -> str:
        """Url of a single chart version."""
        return f"{self.charts_url}/{name}/{version}"

    def _headers(self) -> dict[str, str]:
        if (auth := self._source.auth) is None:
            return {}
        token = base64.b64encode(
            f"{auth.username}:{auth.password}".encode("utf-8")
        ).decode("ascii")
        return {"Authorization": f"Basic {token}"}

    def _post_chart(self, url: str, chart_file: Path) -> Response:
        with chart_file.open("rb") as chart_fd:
            return self._session.post(
                url,
                headers=self._headers(),
                files={UPLOAD_FIELD: (chart_file.name, chart_fd)},
                timeout=self._timeout,
            )

    async def upload_chart(self, chart_file: Path, force: bool = False) -> UploadResult:
        """Upload a chart archive, raising unless the registry saved it."""
        url = self.charts_url
        if force:
            url = f"{url}?force=true"
        _LOGGER.info('Uploading chart file: "%s" to "%s"...', chart_file, url)
        try:
            response = await asyncio.to_thread(self._post_chart, url, chart_file)
        except (RequestException, OSError) as err:
            raise RegistryTransportError(
                f"Upload of chart file has failed: {err}"
            ) from err
        result = UploadResult.from_response(response)
        if not result.success:
            result.raise_for_failure()
        _LOGGER.info("Helm Chart has been uploaded")
        return result

    def _get_chart(self, url: str) -> Response:
        return self._session.get(url, headers=self._headers(), timeout=self._timeout)

    async def fetch_chart(self, name: str, version: str) -> FetchResult:
        """Fetch the metadata of a chart version once."""
        url = self.chart_url(name, version)
        _LOGGER.info('Fetching chart data from "%s"...', url)
        try:
            response = await asyncio.to_thread(self._get_chart, url)
        except RequestException as err:
            raise RegistryTransportError(
                f"Download of chart information has failed: {err}"
            ) from err
        if not response.ok:
            return FetchResult(status=response.status_code, body=response.text)
        return FetchResult(
            status=response.status_code,
            metadata=_parse_metadata(response),
            body=response.text,
        )


async def poll_chart(
    client: RegistryClient,
    name: str,
    version: str,
    *,
    attempts: int = FETCH_ATTEMPTS,
    delay: float = FETCH_DELAY,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RegistryChartMetadata:
    """Wait for the registry to index an uploaded chart version.

    A response without chart metadata means the chart is not indexed yet and
    is retried after `delay` seconds, at most `attempts` requests in total.
    Metadata reporting a different version is not retried.
    """
    last_status: int | None = None
    for attempt in range(1, attempts + 1):
        result = await client.fetch_chart(name, version)
        if (metadata := result.metadata) is not None:
            if metadata.version != version:
                raise VersionMismatchError(version, metadata.version)
            _LOGGER.info(
                "Chart %s %s indexed after %d attempt(s)", name, version, attempt
            )
            return metadata
        last_status = result.status
        _LOGGER.info(
            "Chart %s %s not available yet (status %s, attempt %d/%d)",
            name,
            version,
            result.status,
            attempt,
            attempts,
        )
        if result.body:
            _LOGGER.debug("%s", result.body)
        if attempt < attempts:
            await sleep(delay)
    raise FetchRetryExhaustedError(client.chart_url(name, version), attempts, last_status)
