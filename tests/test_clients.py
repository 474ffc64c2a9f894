"""Tests for the Kasm and GhostHands HTTP clients and task status sync."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from models.state import TaskStatus
from services.errors import ExecutionBackendError, KasmApiError
from services.ghosthands import GhostHandsClient, TaskSyncService
from services.kasm import KasmClient


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestKasmClient:
    """Kasm API calls."""

    @pytest.mark.asyncio
    async def test_credentials_sent_in_body(self):
        """Test that every call carries the key pair in the JSON body."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"kasm": {"operational_status": "running"}})

        client = KasmClient("https://kasm.example/api/public/", "key", "secret", 5, mock_client(handler))
        status = await client.get_kasm_status("kasm-1")

        assert status == {"operational_status": "running"}
        assert seen["url"] == "https://kasm.example/api/public/get_kasm"
        assert seen["body"] == {"api_key": "key", "api_key_secret": "secret", "kasm_id": "kasm-1"}

    @pytest.mark.asyncio
    async def test_request_kasm_passes_environment(self):
        """Test session creation payload."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"kasm_id": "kasm-2", "kasm_url": "/#/connect/kasm-2"})

        client = KasmClient("https://kasm.example", "key", "secret", 5, mock_client(handler))
        response = await client.request_kasm("img-1", "user-1", {"SANDBOX_ID": "sb-1"})

        assert response["kasm_id"] == "kasm-2"
        assert seen["body"]["image_id"] == "img-1"
        assert seen["body"]["environment"] == {"SANDBOX_ID": "sb-1"}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        """Test that HTTP errors surface as KasmApiError."""
        client = KasmClient(
            "https://kasm.example", "key", "secret", 5,
            mock_client(lambda request: httpx.Response(403, text="bad key")),
        )
        with pytest.raises(KasmApiError) as exc_info:
            await client.destroy_kasm("kasm-1")
        assert exc_info.value.status_code == 403
        assert exc_info.value.endpoint == "/destroy_kasm"

    @pytest.mark.asyncio
    async def test_empty_body(self):
        """Test that an empty success body is tolerated."""
        client = KasmClient(
            "https://kasm.example", "key", "secret", 5,
            mock_client(lambda request: httpx.Response(200)),
        )
        assert await client.destroy_kasm("kasm-1") is None


class TestGhostHandsClient:
    """Execution backend calls."""

    @pytest.mark.asyncio
    async def test_status_request(self):
        """Test path and service key header."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["key"] = request.headers.get("X-GH-Service-Key")
            return httpx.Response(200, json={"status": "running"})

        client = GhostHandsClient("https://gh.example/", "svc-key", 5, mock_client(handler))

        assert await client.get_job_status("gh-job-1") == {"status": "running"}
        assert seen["path"] == "/api/v1/gh/valet/status/gh-job-1"
        assert seen["key"] == "svc-key"

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        """Test that a missing base URL raises before any request."""
        client = GhostHandsClient(base_url="", service_key="k", timeout_seconds=5)
        client.base_url = ""
        with pytest.raises(ExecutionBackendError):
            await client.get_job_status("gh-job-1")

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """Test error status mapping."""
        client = GhostHandsClient(
            "https://gh.example", "k", 5,
            mock_client(lambda request: httpx.Response(502, text="bad gateway")),
        )
        with pytest.raises(ExecutionBackendError) as exc_info:
            await client.get_job_status("gh-job-1")
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Test that connection failures become ExecutionBackendError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = GhostHandsClient("https://gh.example", "k", 5, mock_client(handler))
        with pytest.raises(ExecutionBackendError):
            await client.cancel_job("gh-job-1")


class TestTaskSyncService:
    """Task status sync."""

    @pytest.fixture
    def repo(self):
        return AsyncMock()

    @pytest.fixture
    def client(self):
        return AsyncMock()

    @pytest.fixture
    def sync(self, repo, client):
        return TaskSyncService(repo, client)

    @pytest.mark.asyncio
    async def test_missing_task(self, sync, repo):
        """Test unknown task ids."""
        repo.find_by_id.return_value = None
        result = await sync.sync_status("nope")
        assert result.error == "Task not found"

    @pytest.mark.asyncio
    async def test_unlinked_task(self, sync, repo, task_factory):
        """Test a task with no backend run."""
        repo.find_by_id.return_value = task_factory(workflow_run_id=None)
        result = await sync.sync_status("task-1")
        assert result.error == "No GhostHands job linked"

    @pytest.mark.asyncio
    async def test_backend_unreachable(self, sync, repo, client, task_factory):
        """Test that a fetch failure is reported, not raised."""
        repo.find_by_id.return_value = task_factory()
        client.get_job_status.side_effect = ExecutionBackendError("timed out")
        result = await sync.sync_status("task-1")
        assert result.error == "Failed to fetch GH status"
        repo.update_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_completed_run_updates_task(self, sync, repo, client, task_factory):
        """Test a finished run moving the task to completed."""
        repo.find_by_id.return_value = task_factory(execution_status="running")
        repo.update_status.return_value = task_factory(status=TaskStatus.COMPLETED)
        client.get_job_status.return_value = {
            "job_id": "gh-job-1",
            "status": "completed",
            "result": {"submitted": True},
            "timestamps": {"completed_at": "2025-06-01T11:59:00Z"},
        }

        result = await sync.sync_status("task-1")

        assert result.task_updated and result.job_updated
        assert result.previous_status == "in_progress"
        assert result.new_status == "completed"
        assert result.message == "Status synced from GhostHands"
        repo.update_status.assert_awaited_once_with("task-1", TaskStatus.COMPLETED)
        kwargs = repo.update_execution_result.await_args.kwargs
        assert kwargs["result"] == {"submitted": True}
        assert kwargs["error"] is None
        repo.update_execution_status.assert_awaited_once_with("task-1", "completed")

    @pytest.mark.asyncio
    async def test_terminal_task_not_rewritten(self, sync, repo, client, task_factory):
        """Test that a terminal task keeps its status."""
        repo.find_by_id.return_value = task_factory(status=TaskStatus.CANCELLED, execution_status="failed")
        client.get_job_status.return_value = {"status": "failed"}

        result = await sync.sync_status("task-1")

        repo.update_status.assert_not_awaited()
        assert result.message == "Already in sync"
        assert not result.changed

    @pytest.mark.asyncio
    async def test_lost_race_to_terminal(self, sync, repo, client, task_factory):
        """Test that a conditional update miss is not reported as an update."""
        repo.find_by_id.return_value = task_factory(execution_status="running")
        repo.update_status.return_value = None
        client.get_job_status.return_value = {"status": "failed", "error": {"code": "x", "message": "y"}}

        result = await sync.sync_status("task-1")

        assert result.task_updated is False
        assert result.job_updated is True
        assert result.new_status == "in_progress"
        repo.update_execution_result.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persist_failure(self, sync, repo, client, task_factory):
        """Test that a database error comes back as a sync error."""
        repo.find_by_id.return_value = task_factory()
        repo.update_status.side_effect = RuntimeError("db down")
        client.get_job_status.return_value = {"status": "completed"}

        result = await sync.sync_status("task-1")

        assert result.failed
        assert "db down" in result.error
