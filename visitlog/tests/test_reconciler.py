"""
test_reconciler.py — unit tests for the session decision and history merge.

No database: decide_session() only looks at the row's last_active_at and
visit_history, so transient ORM instances are enough.
"""
from datetime import timedelta

from visitlog.models.session import VisitorSessionORM
from visitlog.tracking.reconciler import (
    ContinueSession,
    NewSession,
    RotateSession,
    decide_session,
    event_key,
    identity_columns,
    merge_history,
)

from helpers import T0

TIMEOUT = timedelta(minutes=30)


def _row(idle: timedelta, history=None) -> VisitorSessionORM:
    return VisitorSessionORM(
        session_id="11111111-1111-4111-8111-111111111111",
        last_active_at=T0 - idle,
        started_at=T0 - idle,
        visit_history=history or [],
    )


# ---------------------------------------------------------------------------
# decide_session
# ---------------------------------------------------------------------------

def test_missing_row_is_new_session() -> None:
    assert decide_session(None, T0, TIMEOUT) == NewSession()


def test_active_row_continues_with_prior_history() -> None:
    history = [{"path": "/home", "timestamp": "2026-10-19T11:50:00+00:00"}]
    decision = decide_session(_row(timedelta(minutes=10), history), T0, TIMEOUT)
    assert isinstance(decision, ContinueSession)
    assert decision.prior_history == history


def test_idle_exactly_at_timeout_still_continues() -> None:
    decision = decide_session(_row(TIMEOUT), T0, TIMEOUT)
    assert isinstance(decision, ContinueSession)


def test_idle_past_timeout_rotates_with_fresh_id() -> None:
    decision = decide_session(
        _row(timedelta(minutes=31)),
        T0,
        TIMEOUT,
        new_id=lambda: "22222222-2222-4222-8222-222222222222",
    )
    assert decision == RotateSession(new_session_id="22222222-2222-4222-8222-222222222222")


def test_naive_stored_timestamp_is_treated_as_utc() -> None:
    row = _row(timedelta(minutes=5))
    row.last_active_at = row.last_active_at.replace(tzinfo=None)
    assert isinstance(decide_session(row, T0, TIMEOUT), ContinueSession)


def test_rotation_ids_are_unique() -> None:
    row = _row(timedelta(hours=2))
    first = decide_session(row, T0, TIMEOUT)
    second = decide_session(row, T0, TIMEOUT)
    assert first.new_session_id != second.new_session_id


# ---------------------------------------------------------------------------
# merge_history
# ---------------------------------------------------------------------------

def test_merge_skips_events_already_in_history() -> None:
    prior = [{"path": "/home", "timestamp": "t1"}]
    incoming = [{"path": "/home", "timestamp": "t1"}, {"path": "/projects", "timestamp": "t2"}]
    assert merge_history(prior, incoming) == [
        {"path": "/home", "timestamp": "t1"},
        {"path": "/projects", "timestamp": "t2"},
    ]


def test_merge_deduplicates_within_the_batch() -> None:
    incoming = [
        {"path": "/home", "timestamp": "t1"},
        {"path": "/home", "timestamp": "t1"},
        {"path": "/home", "timestamp": "t2"},
    ]
    assert merge_history([], incoming) == [
        {"path": "/home", "timestamp": "t1"},
        {"path": "/home", "timestamp": "t2"},
    ]


def test_same_path_revisited_later_is_kept() -> None:
    prior = [{"path": "/home", "timestamp": "t1"}]
    merged = merge_history(prior, [{"path": "/home", "timestamp": "t9"}])
    assert len(merged) == 2


def test_key_ignores_extra_fields() -> None:
    assert event_key({"path": "/a", "timestamp": "t", "meta": "x"}) == event_key(
        {"path": "/a", "timestamp": "t"}
    )


def test_timestamp_precision_changes_the_key() -> None:
    prior = [{"path": "/a", "timestamp": "2026-10-19T12:00:00+00:00"}]
    merged = merge_history(prior, [{"path": "/a", "timestamp": "2026-10-19T12:00:00.000+00:00"}])
    assert len(merged) == 2


def test_merge_does_not_mutate_prior() -> None:
    prior = [{"path": "/home", "timestamp": "t1"}]
    merge_history(prior, [{"path": "/x", "timestamp": "t2"}])
    assert prior == [{"path": "/home", "timestamp": "t1"}]


# ---------------------------------------------------------------------------
# identity_columns
# ---------------------------------------------------------------------------

def test_identity_columns_denormalize_known_fields() -> None:
    columns = identity_columns({"name": "Ada", "email": "ada@example.com"})
    assert columns == {
        "user_identity": {"name": "Ada", "email": "ada@example.com"},
        "user_name": "Ada",
        "user_email": "ada@example.com",
        "user_phone": None,
    }


def test_identity_columns_for_absent_identity() -> None:
    assert identity_columns(None)["user_identity"] == {}
