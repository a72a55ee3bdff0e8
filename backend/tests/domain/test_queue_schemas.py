"""Test queue statuses, transition table, and result models."""

import pytest

from remix_queue.queue.schemas import (
    ACTIVE_STATUSES,
    NOT_FOUND,
    TERMINAL_STATUSES,
    TRANSITIONS,
    JobStatus,
    PollResult,
    QueueSummary,
    SweepReport,
    allowed_sources,
)

pytestmark = pytest.mark.unit


def test_status_values_match_persisted_strings():
    """Enum values are the strings stored in the status column."""
    assert [s.value for s in JobStatus] == ["waiting", "running", "done", "error"]


def test_not_found_is_not_a_persisted_status():
    """not_found is reported to clients but never stored."""
    assert NOT_FOUND not in {s.value for s in JobStatus}


def test_terminal_states_have_no_transitions():
    """done and error are terminal."""
    for status in TERMINAL_STATUSES:
        assert TRANSITIONS[status] == []


def test_active_and_terminal_partition_all_statuses():
    """Every status is either active or terminal, never both."""
    assert set(ACTIVE_STATUSES) | set(TERMINAL_STATUSES) == set(JobStatus)
    assert not set(ACTIVE_STATUSES) & set(TERMINAL_STATUSES)


def test_running_only_reachable_from_waiting():
    """Only a waiting job can be admitted."""
    assert allowed_sources(JobStatus.RUNNING) == [JobStatus.WAITING]


@pytest.mark.parametrize("target", [JobStatus.DONE, JobStatus.ERROR])
def test_terminal_reachable_from_waiting_and_running(target):
    """A client may finish a job before or after admission."""
    assert allowed_sources(target) == [JobStatus.WAITING, JobStatus.RUNNING]


def test_nothing_transitions_back_to_waiting():
    """waiting is only ever an initial state."""
    assert allowed_sources(JobStatus.WAITING) == []


def test_poll_result_not_found():
    """not_found polls report position 0 and cannot start."""
    result = PollResult.not_found()

    assert result.status == NOT_FOUND
    assert result.position == 0
    assert result.can_start is False


def test_sweep_report_total():
    """total sums both deletion kinds."""
    assert SweepReport(stale_deleted=2, expired_deleted=3).total == 5
    assert SweepReport().total == 0


def test_queue_summary_defaults_empty():
    """An empty queue summary has zero counts and no slot holder."""
    summary = QueueSummary()

    assert summary.waiting == summary.running == summary.done == summary.error == 0
    assert summary.running_id is None
