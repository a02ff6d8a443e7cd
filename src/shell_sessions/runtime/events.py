"""Typed shell event protocol.

shell-sessions runtime module v0.1.0

Every event produced for a running process is one variant of a closed
tagged union discriminated by ``type``:

- ``data``: a new text chunk (text mode) or a whole terminal frame
  (interactive mode)
- ``binary_detected``: the stream was classified as binary
- ``binary_progress``: cumulative byte count of a binary stream
- ``exit``: the process terminated

Consumers dispatch with ``isinstance`` and raise ``UnhandledEventError``
for anything else.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "AnsiToken",
    "AnsiLine",
    "AnsiOutput",
    "DataEvent",
    "BinaryDetectedEvent",
    "BinaryProgressEvent",
    "ExitEvent",
    "ShellOutputEvent",
    "ShellEvent",
    "UnhandledEventError",
    "is_ansi_output",
]


class AnsiToken(BaseModel):
    """A styled run of text inside a terminal frame line."""

    model_config = ConfigDict(frozen=True)

    text: str
    bold: bool = False
    italic: bool = False
    underline: bool = False
    dim: bool = False
    inverse: bool = False
    fg: str = ""
    bg: str = ""


AnsiLine = list[AnsiToken]
AnsiOutput = list[AnsiLine]


def is_ansi_output(value: object) -> bool:
    """Whether ``value`` is a structured terminal frame rather than text."""
    return isinstance(value, list)


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class DataEvent(_EventBase):
    """Output chunk.

    ``chunk`` is the newly decoded text in text mode, or the complete
    current frame in interactive mode.
    """

    type: Literal["data"] = "data"
    chunk: Union[str, AnsiOutput]


class BinaryDetectedEvent(_EventBase):
    """Emitted once, when the stream is first classified as binary."""

    type: Literal["binary_detected"] = "binary_detected"


class BinaryProgressEvent(_EventBase):
    """Cumulative bytes received since the process started."""

    type: Literal["binary_progress"] = "binary_progress"
    bytes_received: int = Field(ge=0)


class ExitEvent(_EventBase):
    """Process termination.

    ``signal`` is set (and ``exit_code`` is None) when the process was
    killed by a signal.
    """

    type: Literal["exit"] = "exit"
    exit_code: int | None = None
    signal: int | None = None


# Events visible to a streaming callback
ShellOutputEvent = Annotated[
    Union[DataEvent, BinaryDetectedEvent, BinaryProgressEvent],
    Field(discriminator="type"),
]

# Everything the event hub carries
ShellEvent = Annotated[
    Union[DataEvent, BinaryDetectedEvent, BinaryProgressEvent, ExitEvent],
    Field(discriminator="type"),
]


class UnhandledEventError(RuntimeError):
    """A consumer received an event outside the closed event protocol."""

    def __init__(self, event: object) -> None:
        self.event = event
        super().__init__(
            f"An unhandled shell output event was found: {type(event).__name__}"
        )
