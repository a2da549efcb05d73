# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""Command line wrapper around poweredup library."""

import argparse
import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from os import path
from typing import Optional, Tuple

import argcomplete

from poweredup import __name__ as MODULE_NAME
from poweredup import __version__ as MODULE_VERSION

PROG_NAME = (
    f"{path.basename(sys.executable)} -m {MODULE_NAME}"
    if sys.argv[0].endswith("__main__.py")
    else path.basename(sys.argv[0])
)


class Tool(ABC):
    """A ``poweredup`` subcommand."""

    @abstractmethod
    def add_parser(self, subparsers: argparse._SubParsersAction):
        """
        Adds the parser of the subcommand to ``subparsers``.

        Implementations must set ``parser.tool = self`` on the new parser so
        that the tool can be found again after parsing.
        """

    @abstractmethod
    async def run(self, args: argparse.Namespace):
        """Runs the subcommand with the parsed ``args``."""


def _selected_tool(
    parser: argparse.ArgumentParser,
    subparsers: argparse._SubParsersAction,
    name: Optional[str],
) -> Tool:
    """Looks up the tool picked on the command line or exits with usage."""
    if name not in subparsers.choices:
        parser.error(f"missing name of tool: {'|'.join(subparsers.choices)}")

    return subparsers.choices[name].tool


def _add_name_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-n",
        "--name",
        metavar="<name>",
        required=False,
        help="Bluetooth device name or Bluetooth address of the hub",
    )


def _add_timeout_argument(parser: argparse.ArgumentParser, default: float) -> None:
    parser.add_argument(
        "-t",
        "--timeout",
        metavar="<seconds>",
        type=float,
        default=default,
        help="how long to scan for hubs (default: %(default)s)",
    )


class Scan(Tool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        parser = subparsers.add_parser(
            "scan",
            help="list hubs running the official LEGO firmware that are advertising",
        )
        parser.tool = self
        _add_timeout_argument(parser, 5)

    async def run(self, args: argparse.Namespace):
        from poweredup.cli.hubs import scan

        await scan(args.timeout)


class Devices(Tool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        parser = subparsers.add_parser(
            "devices",
            help="connect to a hub and list the attached devices and their modes",
        )
        parser.tool = self
        _add_name_argument(parser)
        _add_timeout_argument(parser, 10)
        parser.add_argument(
            "--wait",
            metavar="<seconds>",
            type=float,
            default=2,
            help="time to wait for device information (default: %(default)s)",
        )

    async def run(self, args: argparse.Namespace):
        from poweredup.cli.hubs import list_devices

        await list_devices(args.name, args.timeout, args.wait)


class Monitor(Tool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        parser = subparsers.add_parser(
            "monitor",
            help="print the values reported by a device",
        )
        parser.tool = self
        _add_name_argument(parser)
        _add_timeout_argument(parser, 10)
        parser.add_argument(
            "--port",
            metavar="<port>",
            type=int,
            required=True,
            help="the port the device is attached to",
        )
        parser.add_argument(
            "--mode",
            metavar="<mode>",
            type=int,
            default=0,
            help="the mode to monitor (default: %(default)s)",
        )
        parser.add_argument(
            "--delta",
            metavar="<delta>",
            type=int,
            default=1,
            help="minimum change in value to report (default: %(default)s)",
        )

    async def run(self, args: argparse.Namespace):
        from poweredup.cli.hubs import monitor

        await monitor(args.name, args.timeout, args.port, args.mode, args.delta)


class MotorTest(Tool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        parser = subparsers.add_parser(
            "motor-test",
            help="set the hub light to green and run each attached motor",
        )
        parser.tool = self
        _add_name_argument(parser)
        _add_timeout_argument(parser, 10)
        parser.add_argument(
            "--speed",
            metavar="<speed>",
            type=int,
            default=50,
            help="motor speed in percent (default: %(default)s)",
        )

    async def run(self, args: argparse.Namespace):
        from poweredup.cli.hubs import motor_test

        await motor_test(args.name, args.timeout, args.speed)


class LWP3Repl(Tool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        parser = subparsers.add_parser(
            "repl",
            help="type LWP3 messages to send and see the messages the hub sends",
        )
        parser.tool = self
        _add_name_argument(parser)

    def run(self, args: argparse.Namespace):
        from poweredup.cli.lwp3.repl import repl, setup_repl_logging

        setup_repl_logging()
        return repl(args.name)


class LWP3(Tool):
    """Tools that work with raw LWP3 messages."""

    def add_parser(self, subparsers: argparse._SubParsersAction):
        self._parser = subparsers.add_parser(
            "lwp3", help="work with raw LEGO Wireless Protocol v3 messages"
        )
        self._parser.tool = self
        self._subparsers = self._parser.add_subparsers(
            metavar="<lwp3-tool>", dest="lwp3_tool", help="the LWP3 tool to run"
        )

        LWP3Repl().add_parser(self._subparsers)

    def run(self, args: argparse.Namespace):
        tool = _selected_tool(self._parser, self._subparsers, args.lwp3_tool)
        return tool.run(args)


def build_parser() -> Tuple[argparse.ArgumentParser, argparse._SubParsersAction]:
    """Creates the parser of the ``poweredup`` command and its subcommands."""
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Utilities for LEGO Powered Up hubs.",
        epilog="Run `%(prog)s <tool> --help` for tool-specific arguments.",
    )
    parser.add_argument(
        "-v", "--version", action="version", version=f"{MODULE_NAME} v{MODULE_VERSION}"
    )
    parser.add_argument(
        "-d", "--debug", action="store_true", help="log debug messages, like frames"
    )

    subparsers = parser.add_subparsers(metavar="<tool>", dest="tool")

    for tool in Scan(), Devices(), Monitor(), MotorTest(), LWP3():
        tool.add_parser(subparsers)

    return parser, subparsers


def main():
    """Runs the ``poweredup`` command line interface."""
    parser, subparsers = build_parser()

    argcomplete.autocomplete(parser)
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s: %(levelname)s: %(name)s: %(message)s",
        level=logging.DEBUG if args.debug else logging.WARNING,
    )

    tool = _selected_tool(parser, subparsers, args.tool)
    asyncio.run(tool.run(args))
