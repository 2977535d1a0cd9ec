"""
Control protocol between the supervisor and its workers.

Each worker has one private, ordered channel to the supervisor. A message
is a tagged record carrying the worker id and an optional payload:

    {"tag": "listening", "worker_id": 3, "payload": {"pid": 4711}}

| Tag        | Direction                         | Meaning                              |
|------------|-----------------------------------|--------------------------------------|
| forked     | implicit (spawn succeeded)        | child process created                |
| online     | worker -> supervisor (first send) | child runtime executing              |
| ready      | worker -> supervisor              | initialised, not yet accepting       |
| start      | supervisor -> worker              | accept authorised (payload: lease)   |
| listening  | worker -> supervisor              | accepting on the shared socket       |
| stop       | supervisor -> worker              | stop accepting, finish in-flight work|
| stopped    | worker -> supervisor              | accept stopped, draining             |
| disconnect | implicit (channel EOF)            | socket released, channel closed      |
| exit       | implicit (process sentinel)       | process terminated                   |

Messages are FIFO per channel. Nothing orders messages across channels.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import ProtocolViolation
from .state import WorkerState


class MessageTag(str, Enum):
    """Control message tags."""

    FORKED = "forked"
    ONLINE = "online"
    READY = "ready"
    START = "start"
    LISTENING = "listening"
    STOP = "stop"
    STOPPED = "stopped"
    DISCONNECT = "disconnect"
    EXIT = "exit"

    def __str__(self) -> str:
        return self.value


class Direction(Enum):
    """Who produces a message."""

    IMPLICIT = "implicit"
    WORKER = "worker"
    SUPERVISOR = "supervisor"


DIRECTIONS: dict[MessageTag, Direction] = {
    MessageTag.FORKED: Direction.IMPLICIT,
    MessageTag.ONLINE: Direction.WORKER,
    MessageTag.READY: Direction.WORKER,
    MessageTag.START: Direction.SUPERVISOR,
    MessageTag.LISTENING: Direction.WORKER,
    MessageTag.STOP: Direction.SUPERVISOR,
    MessageTag.STOPPED: Direction.WORKER,
    MessageTag.DISCONNECT: Direction.IMPLICIT,
    MessageTag.EXIT: Direction.IMPLICIT,
}

# Inbound tag -> (required state, resulting state)
_INBOUND: dict[MessageTag, tuple[WorkerState, WorkerState]] = {
    MessageTag.ONLINE: (WorkerState.FORKED, WorkerState.ONLINE),
    MessageTag.READY: (WorkerState.ONLINE, WorkerState.READY),
    MessageTag.LISTENING: (WorkerState.READY, WorkerState.LISTENING),
    MessageTag.STOPPED: (WorkerState.STOPPING, WorkerState.STOPPED),
    MessageTag.DISCONNECT: (WorkerState.STOPPED, WorkerState.DISCONNECTED),
}

# Command tag -> state the target must be in
_COMMANDS: dict[MessageTag, WorkerState] = {
    MessageTag.START: WorkerState.READY,
    MessageTag.STOP: WorkerState.LISTENING,
}


@dataclass(frozen=True)
class ControlMessage:
    """One logical event on a worker's control channel."""

    tag: MessageTag
    worker_id: int
    payload: dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        """Plain-dict form sent over the channel."""
        return {
            "tag": self.tag.value,
            "worker_id": self.worker_id,
            "payload": dict(self.payload),
        }

    @classmethod
    def from_wire(cls, data: Any) -> ControlMessage:
        """
        Parse the plain-dict wire form.

        Raises:
            ProtocolViolation: If the data is not a well-formed message
        """
        if not isinstance(data, dict):
            raise ProtocolViolation("malformed message", data=repr(data)[:80])
        try:
            tag = MessageTag(data["tag"])
            worker_id = data["worker_id"]
        except (KeyError, ValueError) as e:
            raise ProtocolViolation("malformed message", data=repr(data)[:80]) from e
        if not isinstance(worker_id, int) or isinstance(worker_id, bool):
            raise ProtocolViolation("malformed worker id", worker_id=repr(worker_id))
        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ProtocolViolation("malformed payload", tag=tag.value)
        return cls(tag=tag, worker_id=worker_id, payload=payload)


def expected_state(tag: MessageTag) -> WorkerState | None:
    """State a worker must be in for an inbound tag to be accepted."""
    entry = _INBOUND.get(tag)
    return entry[0] if entry else None


def resulting_state(tag: MessageTag) -> WorkerState | None:
    """State a worker moves to when an inbound tag is accepted."""
    entry = _INBOUND.get(tag)
    return entry[1] if entry else None


def validate_inbound(message: ControlMessage, state: WorkerState) -> WorkerState:
    """
    Check an inbound worker message against the worker's recorded state.

    Args:
        message: Message read from the worker's channel
        state: State the registry holds for that worker

    Returns:
        The state the worker moves to

    Raises:
        ProtocolViolation: If the tag is not a worker message or the worker
            is not in the prerequisite state
    """
    if DIRECTIONS[message.tag] is not Direction.WORKER:
        raise ProtocolViolation(
            "worker sent a message it may not send",
            worker=message.worker_id,
            tag=message.tag.value,
        )
    required, target = _INBOUND[message.tag]
    if state is not required:
        raise ProtocolViolation(
            "message does not match worker state",
            worker=message.worker_id,
            tag=message.tag.value,
            state=str(state),
            expected=str(required),
        )
    return target


def validate_command(tag: MessageTag, state: WorkerState) -> None:
    """
    Check a supervisor command against the target worker's state.

    START is only valid for a READY worker, STOP only for a LISTENING one.

    Raises:
        ProtocolViolation: If the command may not be sent now
    """
    required = _COMMANDS.get(tag)
    if required is None:
        raise ProtocolViolation("not a supervisor command", tag=tag.value)
    if state is not required:
        raise ProtocolViolation(
            f"{tag.value} requires a {required} worker",
            tag=tag.value,
            state=str(state),
        )


def start_message(worker_id: int, lease: int) -> ControlMessage:
    return ControlMessage(MessageTag.START, worker_id, {"lease": lease})


def stop_message(worker_id: int, lease: int | None) -> ControlMessage:
    return ControlMessage(MessageTag.STOP, worker_id, {"lease": lease})
