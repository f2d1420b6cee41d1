"""Command registry: named, schema-typed operations exposed over HTTP.

Commands are registered at import time and the registry is frozen once
model setup completes. After that it is read-only, so request handlers
may resolve commands concurrently without locking.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping

from modelserver.coercion import FieldType
from modelserver.errors import DuplicateCommandError, UnknownCommandError

log = logging.getLogger(__name__)

# Handler signature: handler(handle, **decoded_inputs) -> {output_name: value}
Handler = Callable[..., Mapping[str, Any]]
Schema = Mapping[str, "FieldType | str"]

# Command names become URL path segments.
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]*$")


@dataclass(frozen=True)
class Command:
    name: str
    inputs: Mapping[str, FieldType]
    outputs: Mapping[str, FieldType]
    handler: Handler
    description: str = ""

    def describe(self) -> dict:
        """Schema summary served by GET /commands."""
        return {
            "name": self.name,
            "description": self.description,
            "inputs": {key: ftype.value for key, ftype in self.inputs.items()},
            "outputs": {key: ftype.value for key, ftype in self.outputs.items()},
        }


def _normalise_schema(command_name: str, schema: Schema, side: str) -> Mapping[str, FieldType]:
    normalised: dict[str, FieldType] = {}
    for key, ftype in schema.items():
        if not isinstance(key, str) or not key:
            raise ValueError(f"Command {command_name!r}: {side} field names must be non-empty strings")
        try:
            normalised[key] = FieldType.parse(ftype)
        except ValueError as exc:
            raise ValueError(f"Command {command_name!r}, {side} field {key!r}: {exc}") from None
    return MappingProxyType(normalised)


class CommandRegistry:
    """Maps command names to their schemas and handlers."""

    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}
        self._frozen = False

    def register(
        self,
        name: str,
        inputs: Schema,
        outputs: Schema,
        handler: Handler,
        description: str = "",
    ) -> Command:
        """Add a command. Fails without side effects on a duplicate name."""
        if self._frozen:
            raise RuntimeError(f"Cannot register {name!r}: registry is frozen")
        if not isinstance(name, str) or not _NAME_RE.match(name):
            raise ValueError(f"Invalid command name: {name!r}")
        if not callable(handler):
            raise TypeError(f"Handler for {name!r} is not callable")
        if name in self._commands:
            raise DuplicateCommandError(f"Command {name!r} is already registered")

        command = Command(
            name=name,
            inputs=_normalise_schema(name, inputs, "input"),
            outputs=_normalise_schema(name, outputs, "output"),
            handler=handler,
            description=description,
        )
        self._commands[name] = command
        log.debug("Registered command %s (inputs=%s, outputs=%s)",
                  name, list(command.inputs), list(command.outputs))
        return command

    def command(
        self,
        name: str,
        inputs: Schema,
        outputs: Schema,
        description: str | None = None,
    ) -> Callable[[Handler], Handler]:
        """Decorator form of register(). Description defaults to the docstring's first line."""

        def decorator(func: Handler) -> Handler:
            doc = description
            if doc is None:
                doc = (func.__doc__ or "").strip().split("\n", 1)[0]
            self.register(name, inputs, outputs, func, description=doc)
            return func

        return decorator

    def resolve(self, name: str) -> Command:
        try:
            return self._commands[name]
        except KeyError:
            raise UnknownCommandError(f"Unknown command: {name!r}") from None

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        return sorted(self._commands)

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands.values())

    def __len__(self) -> int:
        return len(self._commands)
