import sys
from collections.abc import Mapping
from contextlib import AbstractContextManager
from copy import deepcopy
from typing import Any, Callable

import emoji
from colors import faint, red, yellow


class UserError(Exception):
    def __init__(self, message) -> None:
        super().__init__(message)
        self.message = message


class Logger(AbstractContextManager):
    """Indenting logger for resource actions.

    Resource stdout is reserved for the JSON results read back by Deployster, so everything here goes to stderr.
    Debug messages are only printed when the logger is verbose."""

    _global_indent: int = 0

    def __init__(self, header: str = None, indent_amount: int = 2, spacious: bool = False,
                 verbose: bool = False) -> None:
        super().__init__()
        self._header: str = header
        self._indent_amount: int = indent_amount
        self._spacious: bool = spacious
        self._verbose: bool = verbose
        self._indent: int = Logger._global_indent

    @property
    def verbose(self) -> bool:
        return self._verbose

    def __enter__(self) -> 'Logger':
        if self._header:
            self.info(self._header)
            if self._spacious:
                self.info('')

        Logger._global_indent += self._indent_amount
        self._indent: int = Logger._global_indent
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> Any:
        if self._spacious:
            self.info('')

        Logger._global_indent -= self._indent_amount
        self._indent: int = Logger._global_indent

        # returning None lets any exception propagate to the caller
        return None

    def _wrap_message(self, message: str, color: Callable[[str], str] = None) -> str:
        if color: message = color(message)
        return "\n".join([(' ' * self._indent) + emoji.emojize(line, language='alias') for line in message.split('\n')])

    def _print(self, message: str) -> None:
        print(message, file=sys.stderr)
        sys.stderr.flush()

    def debug(self, message: str) -> None:
        if self._verbose:
            self._print(self._wrap_message(message, faint))

    def info(self, message: str) -> None:
        self._print(self._wrap_message(message))

    def warn(self, message: str) -> None:
        self._print(self._wrap_message(message, yellow))

    def error(self, message: str) -> None:
        self._print(self._wrap_message(message, red))


def merge(*args) -> dict:
    return merge_into({}, *args)


def merge_into(target: dict, *args) -> dict:
    for source in args:
        for k, v in source.items():
            if k in target and isinstance(target[k], dict) and isinstance(v, Mapping):
                merge_into(target[k], v)
            else:
                target[k] = deepcopy(v)
    return target
