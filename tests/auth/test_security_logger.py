"""Tests for SecurityLogger - auth event audit trail."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from uuid import uuid4

import pytest
from psycopg2.extras import Json

from auth.security_logger import SecurityEvent, SecurityLogger
from clients.postgres_client import PostgresClient
from utils.timezone import now_utc


@pytest.fixture
def postgres():
    return Mock(spec=PostgresClient)


@pytest.fixture
def event_log(postgres):
    return SecurityLogger(postgres)


class TestLogEvent:
    """Test event logging."""

    def test_inserts_event_row(self, event_log, postgres):
        user_id = uuid4()

        event_log.log(
            SecurityEvent.LOGIN_FAILED,
            email="alice@example.com",
            user_id=user_id,
            ip_address="192.168.1.1",
            user_agent="pytest",
        )

        query, params = postgres.execute_returning.call_args.args
        assert "INSERT INTO security_events" in query
        assert params[:5] == ("login_failed", "alice@example.com", str(user_id), "192.168.1.1", "pytest")
        assert params[5] is None
        assert params[6].tzinfo is not None

    def test_details_wrapped_as_jsonb(self, event_log, postgres):
        event_log.log(SecurityEvent.LOGIN_LOCKED, details={"retry_after_seconds": 60})

        params = postgres.execute_returning.call_args.args[1]
        assert isinstance(params[5], Json)
        assert params[5].adapted == {"retry_after_seconds": 60}


class TestGetRecentEvents:
    """Test event querying."""

    def test_no_filters(self, event_log, postgres):
        postgres.execute.return_value = []

        assert event_log.get_recent_events() == []

        query, params = postgres.execute.call_args.args
        assert "WHERE 1=1" in query
        assert "ORDER BY created_at DESC" in query
        assert params == (100,)

    def test_combines_filters(self, event_log, postgres):
        user_id = uuid4()

        event_log.get_recent_events(
            email="alice@example.com",
            user_id=user_id,
            event_type=SecurityEvent.RATE_LIMITED,
            limit=5,
        )

        query, params = postgres.execute.call_args.args
        assert "email = %s AND user_id = %s AND event_type = %s" in query
        assert params == ("alice@example.com", str(user_id), "rate_limited", 5)

    def test_since_filter(self, event_log, postgres):
        since = datetime(2025, 3, 1, tzinfo=timezone.utc)

        event_log.get_recent_events(event_type=SecurityEvent.LOGIN_FAILED, since=since)

        query, params = postgres.execute.call_args.args
        assert "event_type = %s AND created_at >= %s" in query
        assert params == ("login_failed", since, 100)


class TestRotateLogs:
    """Test log rotation to file."""

    def _row(self, email: str, days_old: int) -> dict:
        return {
            "id": uuid4(),
            "event_type": "rate_limited",
            "email": email,
            "user_id": None,
            "ip_address": "10.0.0.1",
            "user_agent": None,
            "details": {"action": "verification"},
            "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc) - timedelta(days=days_old),
        }

    def test_archives_then_deletes_written_rows(self, event_log, postgres, tmp_path):
        rows = [self._row("old@example.com", 10), self._row("older@example.com", 20)]
        postgres.execute.return_value = rows
        archive_path = tmp_path / "security_events.jsonl"

        count = event_log.rotate_logs(older_than_days=5, output_path=archive_path)

        assert count == 2
        lines = archive_path.read_text().splitlines()
        records = [json.loads(line) for line in lines]
        assert [r["email"] for r in records] == ["old@example.com", "older@example.com"]
        assert records[0]["details"] == {"action": "verification"}
        assert records[0]["id"] == str(rows[0]["id"])

        query, params = postgres.execute_returning.call_args.args
        assert "DELETE FROM security_events WHERE id = ANY(%s)" in query
        assert params == ([rows[0]["id"], rows[1]["id"]],)

    def test_cutoff_is_relative_to_now(self, event_log, postgres, tmp_path):
        postgres.execute.return_value = []

        event_log.rotate_logs(older_than_days=7, output_path=tmp_path / "a.jsonl")

        cutoff = postgres.execute.call_args.args[1][0]
        expected = now_utc() - timedelta(days=7)
        assert abs((cutoff - expected).total_seconds()) < 5

    def test_nothing_old_writes_nothing(self, event_log, postgres, tmp_path):
        postgres.execute.return_value = []
        archive_path = tmp_path / "security_events.jsonl"

        assert event_log.rotate_logs(older_than_days=5, output_path=archive_path) == 0
        assert not archive_path.exists()
        postgres.execute_returning.assert_not_called()


@pytest.mark.postgres
class TestAgainstDatabase:
    """Round trip through a real security_events table."""

    def test_logged_event_is_queryable(self, clean_db):
        event_log = SecurityLogger(clean_db)

        event_log.log(SecurityEvent.LOGIN_FAILED, email="target@example.com", ip_address="192.168.1.1")
        event_log.log(SecurityEvent.LOGIN_FAILED, email="other@example.com")

        events = event_log.get_recent_events(email="target@example.com")
        assert len(events) == 1
        assert events[0]["event_type"] == "login_failed"
        assert str(events[0]["ip_address"]) == "192.168.1.1"

    def test_rotation_keeps_recent_events(self, clean_db, tmp_path):
        event_log = SecurityLogger(clean_db)
        clean_db.execute_returning(
            """INSERT INTO security_events (event_type, email, created_at)
               VALUES (%s, %s, %s) RETURNING id""",
            ("rate_limited", "old@example.com", now_utc() - timedelta(days=10)),
        )
        event_log.log(SecurityEvent.RATE_LIMITED, email="recent@example.com")

        assert event_log.rotate_logs(older_than_days=5, output_path=tmp_path / "out.jsonl") == 1
        assert event_log.get_recent_events(email="old@example.com") == []
        assert len(event_log.get_recent_events(email="recent@example.com")) == 1
