# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""
Interactive prompt that connects to a hub without starting a session and
exchanges raw LWP3 messages with it.

Each line typed at the prompt is a message constructor call such as
``HubActionMessage(HubAction.POWER_OFF)``. Everything the hub sends is
decoded and logged.
"""

import asyncio
import contextlib
import inspect
import logging
import os
import re
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Callable, Dict, Optional

from appdirs import user_cache_dir
from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion, FuzzyCompleter
from prompt_toolkit.document import Document
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import StdoutProxy, patch_stdout

from poweredup.ble import BleakTransport, find_hub
from poweredup.cli.hubs import hub_filter
from poweredup.errors import HubDisconnectedError, MalformedMessageError
from poweredup.lwp3 import bytecodes, messages
from poweredup.lwp3.messages import AbstractMessage, parse_message
from poweredup.transport import Transport

logger = logging.getLogger(__name__)
history_file = Path(user_cache_dir("poweredup"), "lwp3-repl-history.txt")


def _public_classes(
    module: ModuleType, predicate: Callable[[type], bool]
) -> Dict[str, type]:
    return {
        name: obj
        for name, obj in vars(module).items()
        if not name.startswith("_")
        and inspect.isclass(obj)
        and obj.__module__ == module.__name__
        and predicate(obj)
    }


ARGUMENT_TYPES = _public_classes(bytecodes, lambda c: issubclass(c, (int, bytes)))
"""Types that can be used as message arguments, including enums and flags."""

MESSAGE_TYPES = _public_classes(
    messages,
    lambda c: issubclass(c, AbstractMessage) and not inspect.isabstract(c),
)
"""Message classes that can be constructed at the prompt."""

# no builtins, so a line can't do anything except build a message
_NAMESPACE = {"__builtins__": {}, **ARGUMENT_TYPES, **MESSAGE_TYPES}


class _MessageCompleter(Completer):
    """
    Offers message types at the start of a line, argument types inside of the
    parentheses and enum members after ``SomeEnum.``.
    """

    _DOTTED_WORD = re.compile(r"[\w.]+")

    def get_completions(self, document: Document, complete_event):
        word = document.get_word_before_cursor(pattern=self._DOTTED_WORD)

        if word.endswith("."):
            yield from self._enum_members(word.split(".")[0])
        elif document.find_enclosing_bracket_left("(", ")") is not None:
            yield from (Completion(name) for name in ARGUMENT_TYPES)
        elif not document.get_word_under_cursor():
            yield from (Completion(name) for name in MESSAGE_TYPES)

    @staticmethod
    def _enum_members(type_name: str):
        cls = ARGUMENT_TYPES.get(type_name)

        if cls is None or not issubclass(cls, Enum):
            return

        for member in cls:
            yield Completion(member.name)


def eval_message(text: str) -> AbstractMessage:
    """
    Evaluates a line typed on the REPL.

    Raises:
        SyntaxError: The line is not a valid expression.
        ValueError: The expression is not a message object.
    """
    msg = eval(text, _NAMESPACE)

    if not isinstance(msg, AbstractMessage):
        raise ValueError(f"{type(msg).__name__} is not a message")

    return msg


def _log_syntax_error(ex: SyntaxError) -> None:
    offset = ex.offset or 1
    end_offset = ex.end_offset or offset + 1
    logger.error(
        "%s\n\n    %s\n   %s",
        ex.msg,
        ex.text,
        " " * offset + "^" * (end_offset - offset),
    )


async def _log_received(transport: Transport) -> None:
    """Logs each message from the hub until it disconnects."""
    async for data in transport.events():
        try:
            msg = parse_message(data)
        except MalformedMessageError as ex:
            logger.warning("could not parse %s: %s", data.hex(" "), ex.reason)
        else:
            logger.info("received: %s", msg)


async def _send_typed(session: PromptSession, transport: Transport) -> None:
    """Sends the messages typed at the prompt until CTRL+D is pressed."""
    # give the connection log messages time to settle
    await asyncio.sleep(1)
    print("Type a message and press ENTER to send it. Press CTRL+D to exit.")

    while True:
        with patch_stdout():
            try:
                line = await session.prompt_async(">>> ")
            except KeyboardInterrupt:
                # CTRL+C discards the line
                continue
            except EOFError:
                return

        if not line.strip():
            continue

        try:
            msg = eval_message(line)
        except SyntaxError as ex:
            _log_syntax_error(ex)
            continue
        except Exception:
            logger.exception("could not evaluate %r", line)
            continue

        logger.info("sending: %s", msg)

        try:
            await transport.write(bytes(msg), response=True)
        except HubDisconnectedError:
            logger.error("hub disconnected")
            return


async def repl(name: Optional[str] = None) -> None:
    """
    Provides an interactive REPL for sending and receiving LWP3 messages.

    Args:
        name: Name or Bluetooth address of the hub or ``None`` for any hub.
    """
    os.makedirs(history_file.parent, exist_ok=True)

    session = PromptSession(
        history=FileHistory(history_file),
        completer=FuzzyCompleter(_MessageCompleter()),
    )

    logger.info("scanning...")

    try:
        hub = await find_hub(hub_filter(name))
    except asyncio.TimeoutError:
        logger.error("timed out")
        return

    logger.info("found %s %r", hub.kind.name, hub.name)

    transport = BleakTransport(hub.device)
    await transport.connect()
    logger.info("connected")

    receive_task = asyncio.create_task(_log_received(transport))
    prompt_task = asyncio.create_task(_send_typed(session, transport))

    try:
        # the receive task ends first if the hub disconnects on its own
        await asyncio.wait(
            {receive_task, prompt_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        prompt_task.cancel()

        with contextlib.suppress(asyncio.CancelledError):
            await prompt_task

        await transport.disconnect()
        await receive_task

    logger.info("disconnected")


def setup_repl_logging() -> None:
    """
    Sends log messages through prompt_toolkit so they don't garble the
    prompt.
    """
    logging.basicConfig(
        stream=StdoutProxy(),
        format="[%(asctime)s.%(msecs)03d] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
        force=True,
    )
    logger.setLevel(logging.INFO)
