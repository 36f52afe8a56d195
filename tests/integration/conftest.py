"""Integration test fixtures using Docker.

Runs the Firestore emulator and Redis in containers. Tests are skipped when
Docker is not available.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from typing import Any
from urllib.parse import urlparse

import httpx
import pytest
import pytest_asyncio

FIRESTORE_PROJECT = "test"
FIRESTORE_PORT = 8500
REDIS_PORT = 6379


def _published_host(client: Any) -> str:
    base_url = client.api.base_url
    if base_url.startswith(("unix://", "npipe://", "http+docker://")):
        return "localhost"
    return urlparse(base_url).hostname or "localhost"


@contextmanager
def published_service(
    client: Any, image: str, container_port: int, command: list[str] | None = None
) -> Iterator[str]:
    """Run a container and yield the host:port its port is published on."""
    container = client.containers.run(
        image,
        detach=True,
        ports={f"{container_port}/tcp": None},
        command=command,
    )
    try:
        container.reload()
        bindings = container.attrs["NetworkSettings"]["Ports"].get(f"{container_port}/tcp")
        if not bindings:
            raise RuntimeError(f"Port {container_port} not published on {container.short_id}")
        yield f"{_published_host(client)}:{bindings[0]['HostPort']}"
    finally:
        container.remove(force=True, v=True)


@pytest.fixture(scope="session")
def docker_client():
    """Create a Docker client or skip if Docker is unavailable."""
    try:
        import docker

        client = docker.from_env()
        client.ping()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    yield client
    client.close()


@pytest.fixture(scope="session")
def firestore_emulator_host(docker_client) -> Iterator[str]:
    """Start the Firestore emulator for the test session."""
    command = [
        "gcloud",
        "beta",
        "emulators",
        "firestore",
        "start",
        f"--host-port=0.0.0.0:{FIRESTORE_PORT}",
    ]
    with published_service(
        docker_client, "google/cloud-sdk:emulators", FIRESTORE_PORT, command
    ) as host:
        _wait_for_http(f"http://{host}/", timeout=120.0)
        yield host


@pytest.fixture(scope="session")
def redis_url(docker_client) -> Iterator[str]:
    """Start Redis for the test session."""
    with published_service(docker_client, "redis:7-alpine", REDIS_PORT) as host:
        yield f"redis://{host}/0"


@pytest_asyncio.fixture
async def firestore_client(
    firestore_emulator_host: str, monkeypatch: pytest.MonkeyPatch
) -> AsyncIterator[Any]:
    """Firestore client bound to the emulator; documents are wiped after each test."""
    from google.cloud import firestore

    monkeypatch.setenv("FIRESTORE_EMULATOR_HOST", firestore_emulator_host)
    client = firestore.AsyncClient(project=FIRESTORE_PROJECT)
    yield client

    url = (
        f"http://{firestore_emulator_host}/emulator/v1/projects/{FIRESTORE_PROJECT}"
        "/databases/(default)/documents"
    )
    async with httpx.AsyncClient() as http:
        await http.delete(url)


@pytest_asyncio.fixture
async def redis_client(redis_url: str):
    """Create a Redis client for tests."""
    import redis.asyncio as redis

    client = redis.from_url(redis_url)
    await _wait_for_redis(client)
    yield client
    await client.flushdb()
    await client.aclose()


def _wait_for_http(url: str, timeout: float) -> None:
    """Wait for an HTTP endpoint to answer."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            httpx.get(url, timeout=2.0)
            return
        except httpx.HTTPError:
            if time.monotonic() >= deadline:
                raise
            time.sleep(1.0)


async def _wait_for_redis(client, timeout: float = 30.0) -> None:
    """Wait for Redis to accept connections."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            await client.ping()
            return
        except Exception:
            if time.monotonic() >= deadline:
                raise
            await asyncio.sleep(0.5)
