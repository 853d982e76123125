from __future__ import annotations

import json
import os
import socket
import subprocess
import sys
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from urllib import error, request

import pytest

APP_PATH = "renewal_orchestrator.api.main:app"


class ApiClient:
    """Minimal JSON client for a running server."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url

    def get(self, path: str) -> tuple[int, Any]:
        return self._call("GET", path, None)

    def post(self, path: str, payload: dict[str, Any] | None = None) -> tuple[int, Any]:
        return self._call("POST", path, payload or {})

    def put(self, path: str, payload: dict[str, Any]) -> tuple[int, Any]:
        return self._call("PUT", path, payload)

    def _call(self, method: str, path: str, payload: dict[str, Any] | None) -> tuple[int, Any]:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = request.Request(
            url=f"{self.base_url}{path}",
            method=method,
            data=data,
            headers={"Content-Type": "application/json"},
        )
        try:
            with request.urlopen(req, timeout=20.0) as response:
                return response.status, json.loads(response.read().decode("utf-8"))
        except error.HTTPError as exc:
            return exc.code, json.loads(exc.read().decode("utf-8"))


def _free_port() -> int:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            return int(sock.getsockname()[1])
    except PermissionError:
        pytest.skip("Socket operations are blocked in this environment.")


def _await_health(client: ApiClient, timeout_s: float = 20.0) -> None:
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        try:
            if client.get("/health")[0] == 200:
                return
        except error.URLError:
            time.sleep(0.2)
    raise TimeoutError(f"Server did not become healthy within {timeout_s:.1f}s")


@pytest.fixture
def api() -> Iterator[ApiClient]:
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1":
        pytest.skip(
            "Set RUN_POSTGRES_INTEGRATION_TESTS=1 and ORCHESTRATOR_DATABASE_URL "
            "to run integration tests against PostgreSQL."
        )
    if not os.getenv("ORCHESTRATOR_DATABASE_URL"):
        pytest.skip("ORCHESTRATOR_DATABASE_URL is required for integration tests.")

    port = _free_port()
    client = ApiClient(f"http://127.0.0.1:{port}")
    env = dict(os.environ)
    # Completions made by the server go through its own completion endpoint.
    env["RENEWAL_ORCHESTRATOR_COMPLETION_BASE_URL"] = client.base_url
    server = subprocess.Popen(  # noqa: S603
        [sys.executable, "-m", "uvicorn", APP_PATH, "--host", "127.0.0.1", "--port", str(port)],
        cwd=str(Path.cwd()),
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    try:
        _await_health(client)
        yield client
    finally:
        server.terminate()
        try:
            server.wait(timeout=5)
        except subprocess.TimeoutExpired:
            server.kill()
            server.wait(timeout=5)
