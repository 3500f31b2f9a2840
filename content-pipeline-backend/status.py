"""
Content status lifecycle.

Every content item is in exactly one of five states:

    uploading -> uploaded -> processing -> completed
        |            |            |
        +------------+------------+--> failed

`completed` and `failed` may only go back to `processing`, which happens
when an operator asks for a reprocess or a retry.
"""

from enum import Enum
from typing import Optional


class ContentStatus(str, Enum):
    """Where a content item is in the pipeline."""

    UPLOADING = "uploading"    # transfer to storage in progress
    UPLOADED = "uploaded"      # transfer complete, eligible for processing
    PROCESSING = "processing"  # transformation/optimization in progress
    COMPLETED = "completed"    # derivatives available
    FAILED = "failed"          # requires manual intervention


# None is the state of an item that does not exist yet.
TRANSITIONS = {
    None: frozenset({ContentStatus.UPLOADING}),
    ContentStatus.UPLOADING: frozenset({ContentStatus.UPLOADED, ContentStatus.FAILED}),
    ContentStatus.UPLOADED: frozenset({ContentStatus.PROCESSING, ContentStatus.FAILED}),
    ContentStatus.PROCESSING: frozenset({ContentStatus.COMPLETED, ContentStatus.FAILED}),
    ContentStatus.COMPLETED: frozenset({ContentStatus.PROCESSING}),
    ContentStatus.FAILED: frozenset({ContentStatus.PROCESSING}),
}

TERMINAL_STATUSES = frozenset({ContentStatus.COMPLETED, ContentStatus.FAILED})


class InvalidStatusTransition(ValueError):
    """Raised when a transition is not in the table."""

    def __init__(self, current: Optional[ContentStatus], target: ContentStatus):
        self.current = current
        self.target = target
        current_name = current.value if current is not None else "(new)"
        super().__init__(f"Cannot move content from '{current_name}' to '{target.value}'")


class StaleStatusError(RuntimeError):
    """Raised when the stored status changed underneath a transition."""

    def __init__(self, content_id: str, expected: ContentStatus):
        self.content_id = content_id
        self.expected = expected
        super().__init__(f"Content {content_id} is no longer '{expected.value}'")


def can_transition(current: Optional[ContentStatus], target: ContentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def validate_transition(current: Optional[ContentStatus], target: ContentStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStatusTransition(current, target)


def is_terminal(status: ContentStatus) -> bool:
    return status in TERMINAL_STATUSES
