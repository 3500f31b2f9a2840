# content-pipeline-backend/tests/test_status.py

import pytest

from status import (
    TRANSITIONS,
    ContentStatus,
    InvalidStatusTransition,
    can_transition,
    is_terminal,
    validate_transition,
)

FORWARD_ORDER = [
    ContentStatus.UPLOADING,
    ContentStatus.UPLOADED,
    ContentStatus.PROCESSING,
    ContentStatus.COMPLETED,
]


def test_status_set_is_closed():
    assert {s.value for s in ContentStatus} == {"uploading", "uploaded", "processing", "completed", "failed"}
    with pytest.raises(ValueError):
        ContentStatus("queued")


def test_new_items_can_only_start_uploading():
    assert TRANSITIONS[None] == frozenset({ContentStatus.UPLOADING})
    for status in ContentStatus:
        assert can_transition(None, status) == (status == ContentStatus.UPLOADING)


@pytest.mark.parametrize("current,target", zip(FORWARD_ORDER, FORWARD_ORDER[1:]))
def test_forward_path_is_allowed(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current", [ContentStatus.UPLOADING, ContentStatus.UPLOADED, ContentStatus.PROCESSING])
def test_non_terminal_statuses_can_fail(current):
    assert can_transition(current, ContentStatus.FAILED)


def test_no_status_transitions_to_itself():
    for status in ContentStatus:
        assert not can_transition(status, status)


def test_skipping_stages_is_rejected():
    assert not can_transition(ContentStatus.UPLOADING, ContentStatus.PROCESSING)
    assert not can_transition(ContentStatus.UPLOADING, ContentStatus.COMPLETED)
    assert not can_transition(ContentStatus.UPLOADED, ContentStatus.COMPLETED)


def test_only_backward_edges_go_from_terminal_to_processing():
    """Everything else moves monotonically toward completed or failed."""
    rank = {status: index for index, status in enumerate(FORWARD_ORDER)}
    rank[ContentStatus.FAILED] = len(FORWARD_ORDER)

    backward = [
        (current, target)
        for current, targets in TRANSITIONS.items()
        if current is not None
        for target in targets
        if rank[target] < rank[current]
    ]
    assert sorted(backward) == sorted([
        (ContentStatus.COMPLETED, ContentStatus.PROCESSING),
        (ContentStatus.FAILED, ContentStatus.PROCESSING),
    ])


def test_completed_and_failed_do_not_cross():
    assert not can_transition(ContentStatus.COMPLETED, ContentStatus.FAILED)
    assert not can_transition(ContentStatus.FAILED, ContentStatus.COMPLETED)
    assert not can_transition(ContentStatus.FAILED, ContentStatus.UPLOADED)


def test_validate_transition_raises_with_readable_message():
    with pytest.raises(InvalidStatusTransition) as excinfo:
        validate_transition(ContentStatus.COMPLETED, ContentStatus.UPLOADED)

    assert excinfo.value.current == ContentStatus.COMPLETED
    assert excinfo.value.target == ContentStatus.UPLOADED
    assert "completed" in str(excinfo.value) and "uploaded" in str(excinfo.value)


def test_validate_transition_for_new_item_names_it_new():
    with pytest.raises(InvalidStatusTransition, match=r"\(new\)"):
        validate_transition(None, ContentStatus.PROCESSING)


def test_terminal_statuses():
    assert is_terminal(ContentStatus.COMPLETED)
    assert is_terminal(ContentStatus.FAILED)
    assert not is_terminal(ContentStatus.PROCESSING)
