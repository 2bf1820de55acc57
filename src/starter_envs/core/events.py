"""Progress events emitted by the provisioning components.

Components report what they are doing as a stream of ``ProgressEvent``
values handed to a reporter callable. Rendering those events to a terminal
is the job of the command line shell.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional


class EventStatus(Enum):
    """Status of a progress event."""

    STARTED = "STARTED"
    INFO = "INFO"
    SUCCEEDED = "SUCCEEDED"
    SKIPPED = "SKIPPED"
    WARNING = "WARNING"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress notification."""

    stage: str
    status: EventStatus
    detail: str


Reporter = Callable[[ProgressEvent], None]


def null_reporter(event: ProgressEvent) -> None:
    """Reporter that discards events."""


class EventRecorder:
    """Reporter that keeps every event it receives."""

    def __init__(self, forward: Optional[Reporter] = None) -> None:
        self.events: List[ProgressEvent] = []
        self._forward = forward

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)
        if self._forward is not None:
            self._forward(event)

    def by_status(self, status: EventStatus) -> List[ProgressEvent]:
        return [event for event in self.events if event.status == status]
