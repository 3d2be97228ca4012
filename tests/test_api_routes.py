from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from outbox_service.api.v1.outbox import get_outbox_processor, get_outbox_repository
from outbox_service.consumers.outbox_processor import TickResult
from outbox_service.core.errors import NotFoundError, PersistenceError
from outbox_service.main import app


@pytest.fixture
def client():
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_repository():
    repository = MagicMock()
    for name in ("stats", "find_failed_events", "requeue", "get", "delete_old_published_events"):
        setattr(repository, name, AsyncMock())
    app.dependency_overrides[get_outbox_repository] = lambda: repository
    return repository


def _outbox_row(**overrides):
    row = MagicMock()
    row.id = 7
    row.event_id = "evt-7"
    row.aggregate_id = "conv-1"
    row.event_type = "MessageAdded"
    row.aggregate_version = 2
    row.published = False
    row.published_at = None
    row.retry_count = 4
    row.last_error = "broker unavailable"
    row.dead_lettered = False
    row.created_at = datetime(2025, 1, 1, tzinfo=timezone.utc)
    for key, value in overrides.items():
        setattr(row, key, value)
    return row


class TestConversationRoutes:
    def test_create_conversation_success(self, client):
        """Test conversation creation returns 201"""
        with patch('outbox_service.api.v1.conversations.create_conversation') as mock_create:
            conversation = MagicMock()
            conversation.id = uuid4()
            conversation.title = "Lunch"
            conversation.participant_ids = ["alice", "bob"]
            conversation.version = 1
            mock_create.return_value = conversation

            response = client.post(
                "/api/v1/conversations/",
                json={"created_by": "alice", "participant_ids": ["bob"], "title": "Lunch"},
            )

            assert response.status_code == 201
            assert response.json()["success"] is True
            assert response.json()["data"]["participant_ids"] == ["alice", "bob"]

    def test_create_conversation_validation_error(self, client):
        response = client.post("/api/v1/conversations/", json={"created_by": "alice", "participant_ids": []})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    def test_send_message_returns_202_and_wakes_dispatcher(self, client):
        scheduler = MagicMock()
        app.state.outbox_scheduler = scheduler
        conversation_id = uuid4()
        try:
            with patch('outbox_service.api.v1.conversations.send_message') as mock_send:
                message = MagicMock()
                message.id = uuid4()
                mock_send.return_value = message

                response = client.post(
                    f"/api/v1/conversations/{conversation_id}/messages",
                    json={"sender_id": "alice", "content": "hi"},
                )
        finally:
            del app.state.outbox_scheduler

        assert response.status_code == 202
        assert response.json()["data"]["message_id"] == str(message.id)
        mock_send.assert_awaited_once_with(conversation_id, "alice", "hi")
        scheduler.trigger.assert_called_once()

    def test_send_message_unknown_conversation(self, client):
        with patch('outbox_service.api.v1.conversations.send_message', side_effect=NotFoundError("Conversation not found")):
            response = client.post(
                f"/api/v1/conversations/{uuid4()}/messages",
                json={"sender_id": "alice", "content": "hi"},
            )

        assert response.status_code == 404

    def test_send_message_not_a_participant(self, client):
        with patch('outbox_service.api.v1.conversations.send_message', side_effect=ValueError("not a participant")):
            response = client.post(
                f"/api/v1/conversations/{uuid4()}/messages",
                json={"sender_id": "mallory", "content": "hi"},
            )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "not a participant"

    def test_outbox_write_failure_is_503(self, client):
        """The aggregate change was rolled back, so the client may retry."""
        with patch('outbox_service.api.v1.conversations.send_message', side_effect=PersistenceError("outbox unavailable")):
            response = client.post(
                f"/api/v1/conversations/{uuid4()}/messages",
                json={"sender_id": "alice", "content": "hi"},
            )

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "persistence_error"

    def test_get_conversation_not_found(self, client):
        with patch('outbox_service.api.v1.conversations.get_conversation', return_value=None):
            response = client.get(f"/api/v1/conversations/{uuid4()}")

        assert response.status_code == 404

    def test_mark_read(self, client):
        with patch('outbox_service.api.v1.conversations.mark_messages_read', return_value=2):
            response = client.post(
                f"/api/v1/conversations/{uuid4()}/read",
                json={"reader_id": "bob", "message_ids": [str(uuid4()), str(uuid4())]},
            )

        assert response.status_code == 200
        assert response.json()["data"]["updated"] == 2


class TestOutboxRoutes:
    def test_stats(self, client, mock_repository):
        mock_repository.stats.return_value = {
            "pending": 3, "published": 10, "dead_lettered": 1, "failing": 2, "oldest_pending_at": None,
        }

        response = client.get("/api/v1/outbox/stats")

        assert response.status_code == 200
        assert response.json()["data"]["pending"] == 3

    def test_failed_events(self, client, mock_repository):
        mock_repository.find_failed_events.return_value = [_outbox_row()]

        response = client.get("/api/v1/outbox/failed?min_retries=2&limit=5")

        assert response.status_code == 200
        mock_repository.find_failed_events.assert_awaited_once_with(min_retries=2, limit=5)
        events = response.json()["data"]["events"]
        assert events[0]["event_id"] == "evt-7"
        assert events[0]["retry_count"] == 4

    def test_dispatch_runs_a_tick(self, client):
        processor = MagicMock()
        processor.try_tick = AsyncMock(return_value=TickResult(fetched=2, published=2))
        app.dependency_overrides[get_outbox_processor] = lambda: processor

        response = client.post("/api/v1/outbox/dispatch")

        assert response.status_code == 200
        assert response.json()["data"] == {"fetched": 2, "published": 2, "failed": 0, "dead_lettered": 0}

    def test_dispatch_conflicts_with_running_tick(self, client):
        processor = MagicMock()
        processor.try_tick = AsyncMock(return_value=None)
        app.dependency_overrides[get_outbox_processor] = lambda: processor

        response = client.post("/api/v1/outbox/dispatch")

        assert response.status_code == 409

    def test_dispatch_without_dispatcher_is_503(self, client):
        response = client.post("/api/v1/outbox/dispatch")

        assert response.status_code == 503

    def test_requeue(self, client, mock_repository):
        mock_repository.requeue.return_value = True
        mock_repository.get.return_value = _outbox_row(retry_count=0)

        response = client.post("/api/v1/outbox/7/requeue")

        assert response.status_code == 200
        mock_repository.requeue.assert_awaited_once_with(7)

    def test_requeue_unknown_event(self, client, mock_repository):
        mock_repository.requeue.return_value = False

        response = client.post("/api/v1/outbox/7/requeue")

        assert response.status_code == 404

    def test_purge_published(self, client, mock_repository):
        mock_repository.delete_old_published_events.return_value = 12

        response = client.delete("/api/v1/outbox/published?older_than_days=7")

        assert response.status_code == 200
        assert response.json()["data"]["deleted"] == 12
        mock_repository.delete_old_published_events.assert_awaited_once_with(older_than_days=7)


def test_error_envelope_echoes_request_id(client):
    with patch('outbox_service.api.v1.conversations.get_conversation', return_value=None):
        response = client.get(f"/api/v1/conversations/{uuid4()}", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": {"code": "http_error", "message": "Conversation not found"},
        "request_id": "req-123",
    }
