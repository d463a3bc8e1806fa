"""Harbor-resource out action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import cast

from harbor_resource.pipeline import PipelineOptions, publish
from harbor_resource.request import read_request

_LOGGER = logging.getLogger(__name__)


class OutAction:
    """Harbor-resource out action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "out",
                help="Package, upload and verify a helm chart",
                description="""Reads the request from stdin, packages the chart,
                    uploads it to the registry and writes the published version
                    to stdout.""",
            ),
        )
        args.add_argument(
            "source_dir",
            help="Build directory that relative paths in params are resolved against",
            type=pathlib.Path,
            default=pathlib.Path("."),
            nargs="?",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        source_dir: pathlib.Path,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        request = read_request(sys.stdin.read())
        response = await publish(
            request, PipelineOptions(base_dir=source_dir.resolve())
        )
        sys.stdout.write(response.json())
        sys.stdout.flush()
