# -*- coding: utf-8 -*-
"""Location: ./chatwarden/message_parser.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Lexical command parser.

Turns raw message text into an ``Invocation`` or ``None``. The parser knows
nothing about which commands exist, except in prefixless deployments where a
name provider is consulted to tell commands from ordinary chat.

Examples:
    >>> parser = MessageParser("!")
    >>> parser.parse("!roll 2d6")
    Invocation(command_name='roll', raw_args='2d6')
    >>> parser.parse("hello there") is None
    True
    >>> parser.parse("!help   ")
    Invocation(command_name='help', raw_args='')
"""

# Future
from __future__ import annotations

# Standard
import re
from typing import Callable, Collection, Optional

# First-Party
from chatwarden.models import Invocation

_COMMAND_RE = re.compile(r"(\S+)(?:\s+(.*))?", re.DOTALL)


class MessageParser:
    """Parses command messages.

    Attributes:
        prefix: Leading marker of a command (may be empty in prefixless mode).
    """

    def __init__(self, prefix: str = "!", command_names: Optional[Callable[[], Collection[str]]] = None) -> None:
        """Create a parser.

        Args:
            prefix: Command prefix such as ``"!"``. Empty means prefixless.
            command_names: Provider of known names, required for prefixless mode.

        Raises:
            ValueError: If prefixless mode is requested without a name provider.
        """
        if not prefix and command_names is None:
            raise ValueError("prefixless parsing requires a command name provider")
        self.prefix = prefix
        self._command_names = command_names

    def parse(self, text: str) -> Optional[Invocation]:
        """Parse message text.

        Args:
            text: Raw message content.

        Returns:
            Optional[Invocation]: The invocation, or None when the text is not a command.

        Examples:
            >>> MessageParser("!").parse("!")  is None
            True
            >>> MessageParser("!").parse("! roll") is None
            True
            >>> MessageParser("", lambda: {"roll"}).parse("roll d20")
            Invocation(command_name='roll', raw_args='d20')
            >>> MessageParser("", lambda: {"roll"}).parse("rolling stones") is None
            True
        """
        if not isinstance(text, str) or not text:
            return None

        if self.prefix:
            if not text.startswith(self.prefix):
                return None
            body = text[len(self.prefix) :]
            # "! roll" is chat, not a command
            if not body or body[0].isspace():
                return None
        else:
            body = text.lstrip()

        match = _COMMAND_RE.fullmatch(body)
        if not match:
            return None
        name = match.group(1)
        raw_args = (match.group(2) or "").strip()

        if not self.prefix and name not in self._command_names():
            return None
        return Invocation(command_name=name, raw_args=raw_args)
