"""Shared pytest fixtures for PhotoGen tests."""

from __future__ import annotations

import io
import json
import shutil
import tempfile
from pathlib import Path
from typing import Any, Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from photogen.core.config import PhotogenConfig

PROVIDER_BASE = "https://provider.test/api/v1/jobs"
CDN_BASE = "https://cdn.provider.test"


def make_png(width: int = 64, height: int = 48, color: str = "red") -> bytes:
    """Render a small solid-colour PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeProvider:
    """In-memory stand-in for the provider API and its image CDN.

    Served through ``httpx.MockTransport``.  Each ``createTask`` call returns
    a fresh ``prov-N`` id; tests override ``create_response`` or
    ``record_info`` to script other answers.

    Attributes:
        requests: Every request received, in order.
        create_response: ``(status, body)`` for the next createTask calls, or
            None for the default success envelope.
        record_info: ``data`` object returned by recordInfo.
        images: CDN path -> image bytes.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.create_response: tuple[int, Any] | None = None
        self.record_info: dict[str, Any] = {"state": "running"}
        self.images: dict[str, bytes] = {"/result.png": make_png()}
        self._counter = 0

    @property
    def created(self) -> list[dict[str, Any]]:
        """JSON bodies of all createTask calls."""
        return [
            json.loads(request.content)
            for request in self.requests
            if request.url.path.endswith("/createTask")
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url.startswith(CDN_BASE):
            data = self.images.get(request.url.path)
            if data is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, content=data, headers={"content-type": "image/png"})

        if request.url.path.endswith("/createTask"):
            if self.create_response is not None:
                status, body = self.create_response
                if isinstance(body, str):
                    return httpx.Response(status, text=body)
                return httpx.Response(status, json=body)
            self._counter += 1
            return httpx.Response(
                200,
                json={"code": 200, "msg": "success", "data": {"taskId": f"prov-{self._counter}"}},
            )

        if request.url.path.endswith("/recordInfo"):
            data = {"taskId": request.url.params.get("taskId"), **self.record_info}
            return httpx.Response(200, json={"code": 200, "msg": "success", "data": data})

        return httpx.Response(404, text="unknown endpoint")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> PhotogenConfig:
    """Create a test configuration pointing at temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        PhotogenConfig instance for testing
    """
    return PhotogenConfig(
        provider_base_url=PROVIDER_BASE,
        provider_api_key="test-key-123",
        webhook_base_url="photogen.test",
        database_path=temp_dir / "data" / "tasks.db",
        storage_dir=temp_dir / "storage",
        _env_file=None,
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def transport(fake_provider: FakeProvider) -> httpx.MockTransport:
    """Mock transport routing provider and CDN requests to ``fake_provider``."""
    return httpx.MockTransport(fake_provider.handler)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def test_client(
    test_config: PhotogenConfig, transport: httpx.MockTransport
) -> Generator[TestClient, None, None]:
    """TestClient for an app wired to the temporary config and fake provider.

    The client is entered as a context manager so the lifespan runs and the
    services exist on ``app.state``.
    """
    from photogen.api.main import create_app

    with TestClient(create_app(test_config, transport)) as client:
        yield client
