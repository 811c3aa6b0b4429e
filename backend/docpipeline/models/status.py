"""
Document processing state machine.

    QUEUED ──► PROCESSING ──► COMPLETED
                   │
                   └────────► FAILED ──► PROCESSING   (queue-level retry)

COMPLETED and FAILED are terminal for a single attempt. Only a retry of the
same job may move FAILED back to PROCESSING.
"""

from __future__ import annotations

import enum

from docpipeline.core.exceptions import InvalidTransitionError


class ProcessingStatus(str, enum.Enum):
    QUEUED     = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED  = "COMPLETED"
    FAILED     = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.QUEUED:     frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}),
    ProcessingStatus.FAILED:     frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.COMPLETED:  frozenset(),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    current: ProcessingStatus | None,
    target: ProcessingStatus,
) -> ProcessingStatus:
    """
    Validate and apply a status change.

    `current=None` means no record of the document yet (the upload route
    created it with no status, or the row was written by an older client);
    any first status is accepted.

    Raises:
        InvalidTransitionError: if the move is not in ALLOWED_TRANSITIONS.
    """
    if current is None:
        return target
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target
