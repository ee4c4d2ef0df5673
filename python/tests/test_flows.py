"""Tests for the flow store state machine.

Tests cover:
- Insert and duplicate challenge rejection
- pending -> completed happens at most once, including across concurrent
  sessions
- Expiry computed on read and the idempotent sweep
- Reverify lookback (recent_completed)
- Retention purge and the retention floor
"""

import threading
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from humanmark.db.models import Flow, FlowStatus
from humanmark.services import flows

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _flow(db, challenge, *, context="post", user_id=1, created_at=NOW) -> Flow:
    flow = flows.create_flow_record(
        db,
        challenge=challenge,
        token=f"token-for-{challenge}",
        context=context,
        user_id=user_id,
        now=created_at,
    )
    db.commit()
    return flow


def _completed(db, challenge, *, context="post", user_id=1, completed_at=NOW) -> Flow:
    flow = _flow(db, challenge, context=context, user_id=user_id, created_at=completed_at)
    assert flows.complete(db, flow.id, now=completed_at)
    db.commit()
    db.refresh(flow)
    return flow


class _DriverError(Exception):
    """Stands in for a psycopg error carrying diagnostics."""


class TestCreateFlowRecord:
    def test_creates_pending_flow(self, db_session):
        flow = _flow(db_session, "ch-create")

        assert flow.id is not None
        assert flow.status == FlowStatus.pending.value
        assert flow.completed_at is None
        assert flow.lock_version == 0
        assert flow.anonymous is False

    def test_anonymous_flow(self, db_session):
        flow = _flow(db_session, "ch-anon", user_id=None)

        assert flow.user_id is None
        assert flow.anonymous is True

    def test_duplicate_challenge_rejected(self, db_session):
        _flow(db_session, "ch-dup")

        with pytest.raises(flows.DuplicateChallengeError):
            _flow(db_session, "ch-dup", user_id=2)

        # Session is usable again after the rejected insert
        assert flows.find_by_challenge(db_session, "ch-dup").user_id == 1

    def test_other_constraint_is_not_a_duplicate(self, db_session):
        with pytest.raises(IntegrityError):
            _flow(db_session, "ch-wiki", context="wiki")

        assert flows.find_by_challenge(db_session, "ch-wiki") is None

    @pytest.mark.parametrize(
        ("constraint_name", "expected"),
        [
            ("uq_humanmark_flows_challenge", True),
            ("ck_humanmark_flows_context", False),
            ("ck_humanmark_flows_completed_at", False),
        ],
    )
    def test_duplicate_detection_uses_constraint_name(self, constraint_name, expected):
        orig = _DriverError("constraint violated")
        orig.diag = SimpleNamespace(constraint_name=constraint_name)
        exc = IntegrityError("INSERT INTO humanmark_flows", {}, orig)

        assert flows._is_duplicate_challenge(exc) is expected

    def test_completed_without_timestamp_violates_constraint(self, db_session):
        db_session.add(
            Flow(
                challenge="ch-bad",
                token="t",
                context="post",
                user_id=1,
                status=FlowStatus.completed.value,
                created_at=NOW,
                completed_at=None,
            )
        )
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()


class TestComplete:
    def test_pending_flow_completes_once(self, db_session):
        flow = _flow(db_session, "ch-once")
        done_at = NOW + timedelta(minutes=5)

        assert flows.complete(db_session, flow.id, now=done_at) is True
        db_session.commit()
        db_session.refresh(flow)

        assert flow.status == FlowStatus.completed.value
        assert flow.completed_at is not None
        assert flow.lock_version == 1

    def test_second_completion_is_a_no_op(self, db_session):
        flow = _completed(db_session, "ch-twice")
        first_completed_at = flow.completed_at

        assert flows.complete(db_session, flow.id, now=NOW + timedelta(minutes=1)) is False
        db_session.commit()
        db_session.refresh(flow)

        assert flow.completed_at == first_completed_at
        assert flow.lock_version == 1

    def test_expired_flow_cannot_complete(self, db_session):
        flow = _flow(db_session, "ch-expired")
        assert flows.sweep_expire(db_session, now=NOW + timedelta(hours=2)) == 1
        db_session.commit()

        assert flows.complete(db_session, flow.id, now=NOW + timedelta(hours=2)) is False
        db_session.commit()
        db_session.refresh(flow)
        assert flow.status == FlowStatus.expired.value
        assert flow.completed_at is None

    def test_unknown_flow(self, db_session):
        assert flows.complete(db_session, 999_999) is False

    def test_concurrent_completer_waits_for_first_commit(self, session_factory):
        """A second UPDATE blocks on the first writer's lock, then matches nothing."""
        with session_factory() as setup:
            flow_id = _flow(setup, "ch-race").id

        results: dict[str, bool] = {}

        def second_completer():
            with session_factory() as s:
                results["second"] = flows.complete(s, flow_id, now=NOW)
                s.commit()

        first = session_factory()
        try:
            assert flows.complete(first, flow_id, now=NOW) is True

            thread = threading.Thread(target=second_completer, daemon=True)
            thread.start()
            thread.join(timeout=0.3)
            assert thread.is_alive(), "second completer did not wait for the lock"

            first.commit()
        finally:
            first.close()

        thread.join(timeout=10)
        assert results == {"second": False}


class TestIsExpired:
    def test_fresh_pending_flow(self, db_session):
        flow = _flow(db_session, "ch-fresh")
        assert flows.is_expired(flow, NOW + timedelta(minutes=59)) is False

    def test_exactly_one_hour_is_not_expired(self, db_session):
        flow = _flow(db_session, "ch-boundary")
        assert flows.is_expired(flow, NOW + timedelta(hours=1)) is False

    def test_past_one_hour_is_expired_before_sweep(self, db_session):
        flow = _flow(db_session, "ch-stale")

        assert flows.is_expired(flow, NOW + timedelta(hours=1, seconds=1)) is True
        # Status is untouched until the sweep runs
        db_session.refresh(flow)
        assert flow.status == FlowStatus.pending.value

    def test_completed_flow_never_expires(self, db_session):
        flow = _completed(db_session, "ch-done")
        assert flows.is_expired(flow, NOW + timedelta(days=30)) is False

    def test_expired_status_is_expired(self, db_session):
        flow = _flow(db_session, "ch-marked")
        flows.sweep_expire(db_session, now=NOW + timedelta(hours=2))
        db_session.commit()
        db_session.refresh(flow)

        assert flows.is_expired(flow, NOW) is True


class TestSweepExpire:
    def test_marks_only_stale_pending_flows(self, db_session):
        stale = _flow(db_session, "ch-old", created_at=NOW - timedelta(hours=3))
        fresh = _flow(db_session, "ch-new", created_at=NOW - timedelta(minutes=10))
        done = _completed(db_session, "ch-completed", completed_at=NOW - timedelta(hours=3))

        assert flows.sweep_expire(db_session, now=NOW) == 1
        db_session.commit()
        for flow in (stale, fresh, done):
            db_session.refresh(flow)

        assert stale.status == FlowStatus.expired.value
        assert stale.lock_version == 1
        assert fresh.status == FlowStatus.pending.value
        assert done.status == FlowStatus.completed.value

    def test_is_idempotent(self, db_session):
        _flow(db_session, "ch-idem", created_at=NOW - timedelta(hours=3))

        assert flows.sweep_expire(db_session, now=NOW) == 1
        db_session.commit()
        assert flows.sweep_expire(db_session, now=NOW) == 0

    def test_not_before_skips_older_rows(self, db_session):
        _flow(db_session, "ch-ancient", created_at=NOW - timedelta(days=10))
        recent = _flow(db_session, "ch-recent", created_at=NOW - timedelta(hours=2))

        count = flows.sweep_expire(db_session, now=NOW, not_before=NOW - timedelta(days=7))
        db_session.commit()

        assert count == 1
        db_session.refresh(recent)
        assert recent.status == FlowStatus.expired.value


class TestRecentCompleted:
    def test_within_window(self, db_session):
        _completed(db_session, "ch-recent-ok", completed_at=NOW - timedelta(minutes=30))
        assert flows.recent_completed(db_session, 1, "post", 60, now=NOW) is True

    def test_outside_window(self, db_session):
        _completed(db_session, "ch-recent-old", completed_at=NOW - timedelta(minutes=90))
        assert flows.recent_completed(db_session, 1, "post", 60, now=NOW) is False

    def test_zero_window_always_reverifies(self, db_session):
        _completed(db_session, "ch-zero", completed_at=NOW - timedelta(seconds=1))
        assert flows.recent_completed(db_session, 1, "post", 0, now=NOW) is False

    def test_anonymous_never_qualifies(self, db_session):
        _completed(db_session, "ch-anon-done", user_id=None, completed_at=NOW)
        assert flows.recent_completed(db_session, None, "post", 60, now=NOW) is False

    def test_contexts_are_isolated(self, db_session):
        _completed(db_session, "ch-post-done", context="post", completed_at=NOW)
        assert flows.recent_completed(db_session, 1, "topic", 60, now=NOW) is False

    def test_users_are_isolated(self, db_session):
        _completed(db_session, "ch-user-done", user_id=1, completed_at=NOW)
        assert flows.recent_completed(db_session, 2, "post", 60, now=NOW) is False

    def test_pending_flow_does_not_count(self, db_session):
        _flow(db_session, "ch-still-pending", created_at=NOW)
        assert flows.recent_completed(db_session, 1, "post", 60, now=NOW) is False


class TestPurge:
    def test_deletes_every_status_before_cutoff(self, db_session):
        _flow(db_session, "ch-purge-pending", created_at=NOW - timedelta(days=10))
        _completed(db_session, "ch-purge-done", completed_at=NOW - timedelta(days=9))
        _flow(db_session, "ch-keep", created_at=NOW - timedelta(days=1))

        deleted = flows.purge_older_than(db_session, NOW - timedelta(days=7))
        db_session.commit()

        assert deleted == 2
        assert flows.find_by_challenge(db_session, "ch-purge-pending") is None
        assert flows.find_by_challenge(db_session, "ch-purge-done") is None
        assert flows.find_by_challenge(db_session, "ch-keep") is not None


class TestComputeRetentionDays:
    @pytest.mark.parametrize(
        ("configured", "max_minutes", "expected"),
        [
            (7, 60, 7),
            (1, 4320, 3),
            (1, 1441, 2),
            (7, 4320, 7),
            (1, 0, 1),
        ],
    )
    def test_floor_by_longest_reverify_window(self, configured, max_minutes, expected):
        assert flows.compute_retention_days(configured, max_minutes) == expected
