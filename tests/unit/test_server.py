"""Tests for the status/command API."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from slot_manager.core.exceptions import (
    ConflictError,
    RegistryError,
    SlotNotFoundError,
    TargetExistsError,
    UnsafeDeletionError,
)
from slot_manager.web.models import StatusResponse, StatusSummary
from slot_manager.web.server import create_app


@pytest.fixture
def service(registry):
    service = MagicMock()
    service.store.load.return_value = registry
    service.store.path = Path("/tmp/registry.json")
    service.project_path.side_effect = lambda name: Path("/src") / name
    service.context_for.side_effect = lambda name: MagicMock(slot_name=name)
    return service


@pytest.fixture
def client(config, service):
    return TestClient(create_app(config, service=service))


class TestReadEndpoints:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok", "registry": "/tmp/registry.json", "projects": 1, "slots": 2,
        }

    def test_health_unreadable_registry(self, client, service):
        service.store.load.side_effect = RegistryError("Registry is not valid JSON")
        assert client.get("/api/health").status_code == 500

    def test_slots_are_camel_case(self, client, service):
        service.status.return_value = StatusResponse(summary=StatusSummary(total_slots=3, running_claudes=1))

        body = client.get("/api/slots").json()

        assert body["summary"]["totalSlots"] == 3
        assert body["summary"]["runningClaudes"] == 1
        assert "unregisteredClaudes" in body
        assert "orphanContainers" in body


class TestActions:
    def test_create(self, client, service):
        service.create.return_value = MagicMock(slot_name="app-3")

        response = client.post("/api/slots", json={"action": "create", "project": "app"})

        assert response.status_code == 200
        assert response.json()["name"] == "app-3"
        service.create.assert_called_once_with(Path("/src/app"), identifier=None)

    def test_create_needs_project(self, client, service):
        response = client.post("/api/slots", json={"action": "create"})
        assert response.status_code == 400
        service.create.assert_not_called()

    def test_delete_passes_force(self, client, service):
        response = client.post("/api/slots", json={"action": "delete", "name": "app-1", "force": True})
        assert response.status_code == 200
        assert service.delete.call_args.kwargs["force"] is True

    def test_lock_with_note(self, client, service):
        client.post("/api/slots", json={"action": "lock", "name": "app-1", "note": "demo"})
        assert service.lock.call_args.args[1] == "demo"

    def test_unknown_action_rejected(self, client):
        assert client.post("/api/slots", json={"action": "explode"}).status_code == 422

    def test_stop_container_missing(self, client, service):
        service.stop_container.return_value = False
        response = client.post("/api/slots", json={"action": "stop-container", "container": "ghost"})
        assert response.status_code == 404

    def test_stop_containers_by_prefix(self, client, service):
        service.stop_containers.return_value = ["app-1-db-1", "app-1-cache-1"]
        response = client.post("/api/slots", json={"action": "stop-containers", "prefix": "app-1-"})
        assert response.json()["message"] == "Stopped 2 container(s)"

    def test_stop_process_not_in_snapshot(self, client, service):
        service.stop_process.return_value = False
        response = client.post("/api/slots", json={"action": "stop-process", "pid": 4242})
        assert response.status_code == 404
        service.stop_process.assert_called_once_with(4242)


class TestErrorMapping:
    @pytest.mark.parametrize("error, status", [
        (SlotNotFoundError("app-9"), 404),
        (TargetExistsError("app-1", "/src/app-1"), 409),
        (UnsafeDeletionError("app-1", "dirty", "uncommitted changes"), 409),
        (ConflictError("merge", "/src/app", ["git merge --abort"]), 409),
        (RegistryError("bad registry"), 400),
    ])
    def test_domain_errors_map_to_status(self, client, service, error, status):
        service.delete.side_effect = error
        response = client.post("/api/slots", json={"action": "delete", "name": "app-1"})
        assert response.status_code == status
        assert response.json()["detail"] == str(error)
