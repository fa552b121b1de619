"""Tests for the Docker client wrapper."""

from unittest.mock import MagicMock, PropertyMock, patch

import pytest
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from slot_manager.containers.docker_client import DockerClient


def fake_container(name, ports=None, tags=("postgres:16",), status="running"):
    container = MagicMock()
    container.name = name
    container.status = status
    container.image.tags = list(tags)
    container.attrs = {"NetworkSettings": {"Ports": ports or {}}}
    return container


class TestListContainers:
    def test_published_ports_and_image(self):
        client = MagicMock()
        client.containers.list.return_value = [
            fake_container("app-1-db-1", {
                "5432/tcp": [{"HostIp": "0.0.0.0", "HostPort": "5433"}, {"HostIp": "::", "HostPort": "5433"}],
                "8080/tcp": None,
            }),
            fake_container("app-1-cache-1", tags=()),
        ]

        containers = DockerClient(client).list_containers()

        assert [c.name for c in containers] == ["app-1-cache-1", "app-1-db-1"]
        db = containers[1]
        assert db.ports == [(5433, 5432)]
        assert db.host_ports == [5433]
        assert db.image == "postgres:16"

    def test_removed_image_falls_back_to_config(self):
        container = fake_container("app-1-db-1")
        container.attrs["Config"] = {"Image": "postgres:16-alpine"}
        type(container).image = PropertyMock(side_effect=ImageNotFound("No such image"))
        client = MagicMock()
        client.containers.list.return_value = [container]

        containers = DockerClient(client).list_containers()

        assert [c.image for c in containers] == ["postgres:16-alpine"]

    def test_daemon_down_returns_empty(self):
        client = MagicMock()
        client.containers.list.side_effect = DockerException("connection refused")
        assert DockerClient(client).list_containers() == []

    @patch("slot_manager.containers.docker_client.docker.from_env", side_effect=DockerException("no socket"))
    def test_lazy_client_without_daemon(self, mock_from_env):
        docker_client = DockerClient()
        assert docker_client.list_containers() == []
        with pytest.raises(RuntimeError, match="Docker daemon"):
            docker_client.client


class TestStopContainers:
    def test_stop_one(self):
        client = MagicMock()
        assert DockerClient(client).stop_container("app-1-db-1") is True
        client.containers.get.assert_called_once_with("app-1-db-1")
        client.containers.get.return_value.stop.assert_called_once_with(timeout=10)

    def test_stop_missing(self):
        client = MagicMock()
        client.containers.get.side_effect = NotFound("gone")
        assert DockerClient(client).stop_container("ghost") is False

    def test_stop_api_error_raises(self):
        client = MagicMock()
        client.containers.get.return_value.stop.side_effect = APIError("boom")
        with pytest.raises(RuntimeError):
            DockerClient(client).stop_container("app-1-db-1")

    def test_stop_by_prefix(self):
        client = MagicMock()
        client.containers.list.return_value = [
            fake_container("app-1-db-1"),
            fake_container("app-1-cache-1"),
            fake_container("app-10-db-1"),
        ]
        stopped = DockerClient(client).stop_containers("app-1-")
        assert stopped == ["app-1-cache-1", "app-1-db-1"]
