"""The `out` pipeline: package, sign, upload and verify a chart.

Steps run strictly one after another:
  - resolve the requested version and check it against the version range
  - rewrite version and appVersion in the chart's Chart.yaml
  - package the chart with helm, signing it when requested
  - inspect the archive to confirm its version
  - upload the archive to the registry
  - wait for the registry to index the uploaded version

Any failure raises a `ResourceException` and aborts the run. The temporary
work directory is removed on every path.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
from pathlib import Path
import tempfile
from typing import Any

from aiofiles.ospath import isdir
from requests import Session

from .chart import read_chart, write_chart
from .context import trace_context
from .exceptions import ChartNotFoundError
from .helm import Helm, PackagingRequest, verify_package
from .registry import (
    FETCH_ATTEMPTS,
    FETCH_DELAY,
    RegistryChartMetadata,
    RegistryClient,
    poll_chart,
)
from .request import (
    MetadataField,
    OutRequest,
    OutResponse,
    VersionRef,
    resolve_path,
)
from .signing import SigningOptions
from .version import requested_version, resolve_version

__all__ = [
    "PipelineOptions",
    "build_response",
    "publish",
]

_LOGGER = logging.getLogger(__name__)

TMP_PREFIX = "harbor-resource-"


@dataclass
class PipelineOptions:
    """Settings of a pipeline run that are not part of the request."""

    base_dir: Path = field(default_factory=Path.cwd)
    """Directory relative request paths are resolved against."""

    session: Session | None = None
    """HTTP session used to talk to the registry."""

    fetch_attempts: int = FETCH_ATTEMPTS

    fetch_delay: float = FETCH_DELAY

    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep


def build_response(metadata: RegistryChartMetadata) -> OutResponse:
    """Return the response envelope for an indexed chart version."""
    return OutResponse(
        version=VersionRef(version=metadata.version, digest=metadata.digest or ""),
        metadata=[
            MetadataField(name="created", value=metadata.created or ""),
            MetadataField(name="description", value=metadata.description or ""),
            MetadataField(name="appVersion", value=metadata.app_version or ""),
        ],
    )


def _signing_options(request: OutRequest, base_dir: Path) -> SigningOptions | None:
    params = request.params
    if not params.sign:
        return None
    return SigningOptions(
        key_data=params.key_data,
        key_file=resolve_path(base_dir, params.key_file) if params.key_file else None,
        passphrase=params.key_passphrase,
    )


async def publish(
    request: OutRequest, options: PipelineOptions | None = None
) -> OutResponse:
    """Run the pipeline for a request and return the response to emit."""
    if options is None:
        options = PipelineOptions()
    source = request.source
    params = request.params

    with trace_context("Resolve version"):
        version_file = None
        if params.version_file:
            version_file = resolve_path(options.base_dir, params.version_file)
        requested = await requested_version(
            version=params.version,
            version_file=version_file,
            version_range=source.version_range,
        )

    chart_dir = resolve_path(options.base_dir, params.chart)
    _LOGGER.info('Processing chart at "%s"...', chart_dir)
    if not await isdir(chart_dir):
        raise ChartNotFoundError(f"Chart directory ({chart_dir}) not found")
    signing = _signing_options(request, options.base_dir)

    with trace_context("Update chart"):
        descriptor = await read_chart(chart_dir)
        resolved = resolve_version(
            descriptor,
            requested,
            app_version=params.app_version,
            set_app_version=params.set_app_version,
        )
        _LOGGER.info(
            "Publishing %s version %s (%s)",
            descriptor.name,
            resolved.version,
            "incremented from Chart.yaml" if resolved.incremented else "requested",
        )
        descriptor.version = resolved.version
        if resolved.app_version is not None:
            descriptor.app_version = resolved.app_version
        await write_chart(chart_dir, descriptor)

    with tempfile.TemporaryDirectory(prefix=TMP_PREFIX) as tmp_dir:
        helm = Helm(Path(tmp_dir))
        with trace_context("Package"):
            artifact = await helm.package(
                PackagingRequest(
                    chart_dir=chart_dir,
                    chart_name=descriptor.name,
                    version=resolved.version,
                    app_version=resolved.app_version,
                    signing=signing,
                    force=params.force,
                )
            )
        with trace_context("Inspect"):
            artifact = await verify_package(helm, artifact)

        client = RegistryClient(source, session=options.session)
        with trace_context("Upload"):
            await client.upload_chart(artifact.path, force=params.force)
        _LOGGER.info("- Name: %s", source.chart_name)
        _LOGGER.info("- Version: %s", artifact.expected_version)

    with trace_context("Fetch"):
        metadata = await poll_chart(
            client,
            source.chart_name,
            artifact.expected_version,
            attempts=options.fetch_attempts,
            delay=options.fetch_delay,
            sleep=options.sleep,
        )
    return build_response(metadata)
