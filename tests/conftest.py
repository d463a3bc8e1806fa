"""Shared fixtures for harbor-resource tests."""

from collections.abc import Callable
from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any

import pytest
import yaml

from harbor_resource import command
from harbor_resource.command import Command, CommandResult

CHART_YAML = """\
apiVersion: v2
name: podinfo
description: Podinfo Helm chart for Kubernetes
type: application
version: 6.5.4
appVersion: 6.5.4
home: https://github.com/stefanprodan/podinfo
icon: https://raw.githubusercontent.com/stefanprodan/podinfo/gh-pages/cuddle_clap.gif
kubeVersion: '>=1.23.0-0'
keywords:
- podinfo
maintainers:
- name: stefanprodan
  email: stefanprodan@users.noreply.github.com
dependencies:
- name: redis
  version: 18.1.0
  repository: https://charts.bitnami.com/bitnami
"""

IMPORT_TRANSCRIPT = """\
gpg: keybox '/tmp/gnupg/pubring.kbx' created
gpg: /tmp/gnupg/trustdb.gpg: trustdb created
gpg: key 8B7A1C2D3E4F5061: public key "Chart Signer <ci@example.com>" imported
gpg: key 8B7A1C2D3E4F5061: secret key imported
gpg: Total number processed: 1
gpg:               imported: 1
gpg:       secret keys read: 1
gpg:   secret keys imported: 1
"""

CHART_DIGEST = "3d9a2d2e0b4f6b3ac8e5c2d9a7b1d0c4f2e1a0b9c8d7e6f5a4b3c2d1e0f9a8b7"


Handler = Callable[[Command, bytes | None], CommandResult]


@dataclass
class CommandRecorder:
    """Stand-in for running subprocesses that records every command line."""

    handlers: list[tuple[tuple[str, ...], Handler]] = field(default_factory=list)
    calls: list[list[str]] = field(default_factory=list)
    stdins: list[bytes | None] = field(default_factory=list)

    def on(self, prefix: list[str], handler: Handler | CommandResult) -> None:
        """Answer commands starting with prefix using the handler."""
        if isinstance(handler, CommandResult):
            result = handler
            self.handlers.insert(0, (tuple(prefix), lambda cmd, stdin: result))
        else:
            self.handlers.insert(0, (tuple(prefix), handler))

    def commands(self, *prefix: str) -> list[list[str]]:
        """Return the recorded command lines starting with prefix."""
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]

    async def __call__(self, cmd: Command, stdin: bytes | None = None) -> CommandResult:
        self.calls.append(list(cmd.cmd))
        self.stdins.append(stdin)
        for prefix, handler in self.handlers:
            if tuple(cmd.cmd[: len(prefix)]) == prefix:
                return handler(cmd, stdin)
        return CommandResult(returncode=0, stdout="", stderr="")


def _arg(cmd: Command, flag: str) -> str:
    return cmd.cmd[cmd.cmd.index(flag) + 1]


def fake_helm_package(cmd: Command, stdin: bytes | None) -> CommandResult:
    """Write an archive where `helm package` would write the chart."""
    chart_dir = Path(cmd.cmd[-1])
    name = yaml.safe_load((chart_dir / "Chart.yaml").read_text())["name"]
    version = _arg(cmd, "--version")
    artifact = Path(_arg(cmd, "--destination")) / f"{name}-{version}.tgz"
    artifact.write_bytes(b"chart-archive")
    return CommandResult(
        returncode=0,
        stdout=f"Successfully packaged chart and saved it to: {artifact}\n",
        stderr="",
    )


def fake_helm_show(cmd: Command, stdin: bytes | None) -> CommandResult:
    """Answer `helm show chart` with the version encoded in the archive name."""
    artifact = Path(cmd.cmd[-1])
    version = artifact.name.removesuffix(".tgz").split("-", 1)[1]
    return CommandResult(
        returncode=0,
        stdout=f"apiVersion: v2\nname: podinfo\nversion: {version}\n",
        stderr="",
    )


def fake_gpg(cmd: Command, stdin: bytes | None) -> CommandResult:
    """Answer gpg commands like a successful import and export do."""
    if "--import" in cmd.cmd:
        return CommandResult(returncode=0, stdout="", stderr=IMPORT_TRANSCRIPT)
    if "--output" in cmd.cmd:
        Path(_arg(cmd, "--output")).write_bytes(b"secring")
    return CommandResult(returncode=0, stdout="", stderr="")


@pytest.fixture(name="recorder")
def recorder_fixture(monkeypatch: pytest.MonkeyPatch) -> CommandRecorder:
    """Fixture that replaces subprocess execution with a recorder."""
    recorder = CommandRecorder()
    recorder.on(["helm", "package"], fake_helm_package)
    recorder.on(["helm", "show", "chart"], fake_helm_show)
    recorder.on(["gpg"], fake_gpg)
    monkeypatch.setattr(command, "run_result", recorder)
    return recorder


@pytest.fixture(name="chart_dir")
def chart_dir_fixture(tmp_path: Path) -> Path:
    """Fixture for a chart directory containing a Chart.yaml."""
    chart_dir = tmp_path / "charts" / "podinfo"
    chart_dir.mkdir(parents=True)
    (chart_dir / "Chart.yaml").write_text(CHART_YAML)
    return chart_dir


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int, body: Any = None, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        self._body = body
        self.text = json.dumps(body) if body is not None else ""

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body


class FakeSession:
    """Records registry requests and answers them from queued responses."""

    def __init__(
        self,
        post_responses: list[FakeResponse | Exception] | None = None,
        get_responses: list[FakeResponse | Exception] | None = None,
    ) -> None:
        self.post_responses = list(post_responses or [])
        self.get_responses = list(get_responses or [])
        self.posts: list[dict[str, Any]] = []
        self.gets: list[dict[str, Any]] = []

    def post(
        self, url: str, headers: dict[str, str], files: dict[str, Any], timeout: int
    ) -> FakeResponse:
        name, chart_fd = files["chart"]
        self.posts.append(
            {
                "url": url,
                "headers": headers,
                "filename": name,
                "content": chart_fd.read(),
                "timeout": timeout,
            }
        )
        return self._next(self.post_responses)

    def get(self, url: str, headers: dict[str, str], timeout: int) -> FakeResponse:
        self.gets.append({"url": url, "headers": headers, "timeout": timeout})
        return self._next(self.get_responses)

    @staticmethod
    def _next(responses: list[FakeResponse | Exception]) -> FakeResponse:
        response = responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def saved_response() -> FakeResponse:
    """Return the registry response to a stored upload."""
    return FakeResponse(201, {"saved": True}, reason="Created")


def chart_response(version: str, **overrides: Any) -> FakeResponse:
    """Return a registry response describing an indexed chart version."""
    metadata = {
        "name": "podinfo",
        "version": version,
        "appVersion": version,
        "description": "Podinfo Helm chart for Kubernetes",
        "apiVersion": "v2",
        "urls": [f"charts/podinfo-{version}.tgz"],
        "created": "2024-02-01T10:00:00.000000000Z",
        "digest": CHART_DIGEST,
    }
    metadata.update(overrides)
    return FakeResponse(200, {"metadata": metadata, "dependencies": [], "values": {}})


def not_found_response() -> FakeResponse:
    """Return the registry response for a chart that is not indexed yet."""
    return FakeResponse(404, {"errors": [{"code": "NOT_FOUND"}]}, reason="Not Found")
