"""Library for running `helm` to package and inspect a chart.

Packaging a chart runs these commands in order:
  - `helm repo add` for every repository referenced by `requirements.yaml`
  - `helm dependency build`
  - `helm package`, optionally signing with a key imported for the run

This is an example that packages a chart into a temporary directory:
```python
from harbor_resource.helm import Helm, PackagingRequest

helm = Helm(Path("/tmp/work"))
artifact = await helm.package(
    PackagingRequest(chart_dir=Path("charts/podinfo"), chart_name="podinfo",
                     version="1.2.3", app_version="1.2.3")
)
version = await helm.inspect(artifact)
```

Repository configuration and cache live inside the work directory so that a
run never touches the helm configuration of the user running it.
"""

from collections.abc import Iterable
from contextlib import AsyncExitStack
from dataclasses import dataclass
import logging
from pathlib import Path
import re

import aiofiles
from aiofiles.ospath import exists, isfile

from . import command
from .exceptions import InspectionError, PackageMissingError, PackagingError
from .signing import SigningKey, SigningOptions, signing_key

__all__ = [
    "Helm",
    "ArtifactHandle",
    "PackagingRequest",
    "RepositoryReference",
    "find_repositories",
    "read_repositories",
    "verify_package",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"
REQUIREMENTS_FILE = "requirements.yaml"

_REPO_URL_PATTERN = re.compile(
    r"(https?://(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"[-a-zA-Z0-9()@:%_+.~#?&/=]*)"
)
_REPO_NAME_PATTERN = re.compile(r"//([^.]*)")
_VERSION_PREFIX = "version:"


@dataclass(frozen=True)
class RepositoryReference:
    """A chart repository a dependency is fetched from."""

    name: str
    """Local name of the repository, derived from the host name."""

    url: str
    """Url of the repository."""


@dataclass(frozen=True)
class PackagingRequest:
    """Everything needed to package one chart."""

    chart_dir: Path
    """Absolute path of the chart directory."""

    chart_name: str
    """Name of the chart from its descriptor."""

    version: str
    """Resolved chart version."""

    app_version: str | None = None
    """Resolved app version, omitted from the command when None."""

    signing: SigningOptions | None = None
    """Key material when the package must be signed."""

    force: bool = False
    """Overwrite an existing version when uploading."""


@dataclass(frozen=True)
class ArtifactHandle:
    """A packaged chart archive."""

    path: Path
    expected_version: str


def repository_name(url: str) -> str | None:
    """Derive a repository name from the first label of the host name."""
    if (match := _REPO_NAME_PATTERN.search(url)) and match.group(1):
        return match.group(1)
    return None


def find_repositories(lines: Iterable[str]) -> list[RepositoryReference]:
    """Return the repositories referenced in a dependency manifest.

    Repositories are deduplicated by name, the first url seen for a name wins.
    """
    repos: dict[str, RepositoryReference] = {}
    for line in lines:
        if not (url_match := _REPO_URL_PATTERN.search(line)):
            continue
        url = url_match.group(0)
        _LOGGER.debug("Repo %s needs to be added. Checking name...", url)
        if (name := repository_name(url)) is None:
            _LOGGER.warning("Can't capture name from repo: %s", url)
            continue
        if name in repos:
            _LOGGER.debug("Repo %s already found as %s", url, name)
            continue
        repos[name] = RepositoryReference(name=name, url=url)
    return list(repos.values())


async def read_repositories(manifest: Path) -> list[RepositoryReference]:
    """Scan a dependency manifest file for repository urls."""
    lines = []
    async with aiofiles.open(str(manifest)) as manifest_fd:
        async for line in manifest_fd:
            lines.append(line)
    return find_repositories(lines)


def parse_inspected_version(output: str) -> str | None:
    """Return the value of the first line starting with `version:`."""
    for line in output.splitlines():
        if line.startswith(_VERSION_PREFIX):
            return line[len(_VERSION_PREFIX) :].strip().strip("'\"")
    return None


class Helm:
    """Runs helm commands against an isolated repository configuration."""

    def __init__(self, tmp_dir: Path) -> None:
        """Initialize Helm."""
        self._tmp_dir = tmp_dir
        self._flags = [
            "--repository-cache",
            str(tmp_dir / "repository-cache"),
            "--repository-config",
            str(tmp_dir / "repositories.yaml"),
        ]

    @property
    def tmp_dir(self) -> Path:
        """Directory receiving the packaged chart."""
        return self._tmp_dir

    def artifact_path(self, request: PackagingRequest) -> Path:
        """Return the path helm writes the chart archive to."""
        return self._tmp_dir / f"{request.chart_name}-{request.version}.tgz"

    async def add_repo(self, repo: RepositoryReference) -> None:
        """Register a chart repository."""
        _LOGGER.info("Adding repo with name: %s", repo.name)
        args = [HELM_BIN, "repo", "add", repo.name, repo.url]
        args.extend(self._flags)
        await command.run(command.Command(args, exc=PackagingError))

    async def add_repos(self, chart_dir: Path) -> list[RepositoryReference]:
        """Register the repositories referenced in the chart's requirements."""
        manifest = chart_dir / REQUIREMENTS_FILE
        if not await isfile(manifest):
            _LOGGER.info("No requirements found")
            return []
        _LOGGER.info("Requirements found. Adding repositories...")
        repos = await read_repositories(manifest)
        for repo in repos:
            await self.add_repo(repo)
        return repos

    async def dependency_build(self, chart_dir: Path) -> None:
        """Run `helm dependency build` for the chart."""
        _LOGGER.info('Running "helm dependency build"...')
        args = [HELM_BIN, "dependency", "build", str(chart_dir)]
        args.extend(self._flags)
        await command.run(command.Command(args, exc=PackagingError))

    def package_args(
        self, request: PackagingRequest, key: SigningKey | None = None
    ) -> list[str]:
        """Return the `helm package` command line for the request."""
        args = [HELM_BIN, "package", "--destination", str(self._tmp_dir)]
        if key is not None:
            args.extend(["--sign", "--key", key.key_id, "--keyring", str(key.keyring)])
            if key.passphrase is not None:
                args.extend(["--passphrase-file", "-"])
        args.extend(["--version", request.version])
        if request.app_version is not None:
            args.extend(["--app-version", request.app_version])
        args.append(str(request.chart_dir))
        return args

    async def package(self, request: PackagingRequest) -> ArtifactHandle:
        """Package the chart, returning the produced archive."""
        await self.add_repos(request.chart_dir)
        await self.dependency_build(request.chart_dir)

        async with AsyncExitStack() as stack:
            key: SigningKey | None = None
            if request.signing is not None:
                key = await stack.enter_async_context(
                    signing_key(request.signing, self._tmp_dir)
                )
            stdin = None
            if key is not None and key.passphrase is not None:
                stdin = key.passphrase.encode("utf-8")
            _LOGGER.info('Running "helm package"...')
            await command.run(
                command.Command(self.package_args(request, key), exc=PackagingError),
                stdin,
            )

        artifact = ArtifactHandle(
            path=self.artifact_path(request), expected_version=request.version
        )
        if not await exists(artifact.path):
            raise PackageMissingError(
                f"Cannot find packaged helm chart: {artifact.path}"
            )
        return artifact

    async def inspect(self, artifact: ArtifactHandle) -> str:
        """Return the version declared by a chart archive."""
        _LOGGER.info('Inspecting chart file: "%s"...', artifact.path)
        cmd = command.Command(
            [HELM_BIN, "show", "chart", str(artifact.path)], exc=InspectionError
        )
        result = cmd.check(await command.run_result(cmd))
        if result.stderr:
            _LOGGER.warning("%s", result.stderr.rstrip())
        if (version := parse_inspected_version(result.stdout)) is None:
            raise InspectionError(
                "Unable to parse version information from Helm Chart inspection result"
            )
        return version


async def verify_package(helm: Helm, artifact: ArtifactHandle) -> ArtifactHandle:
    """Confirm the archive declares the version it was packaged with."""
    version = await helm.inspect(artifact)
    if version != artifact.expected_version:
        raise InspectionError(
            f"Packaged chart {artifact.path} declares version {version}, "
            f"expected {artifact.expected_version}"
        )
    return ArtifactHandle(path=artifact.path, expected_version=version)
