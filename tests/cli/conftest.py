"""Shared fixtures for CLI tests: tokens, config and an in-memory remote API."""

from __future__ import annotations

import base64
import json
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from cx_tools.cli.client import ApiClient
from cx_tools.cli.config import CliConfig

APP_ID = "7"

CONTENT_FIELDS = {
    "scriptforge": "code",
    "setup/query": "query",
    "setup/template": "html",
}


def _segment(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def build_token(days_remaining: float, now: float | None = None) -> str:
    """Unsigned JWT whose ``exp`` lies ``days_remaining`` days after ``now``."""
    now = time.time() if now is None else now
    claims = {
        "iat": int(now),
        "exp": int(now + days_remaining * 86400),
        "aud": "test-machine",
    }
    return f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment(claims)}.signature"


class FakeRemote:
    """In-memory stand-in for the remote API, served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[int, dict[str, Any]]] = {
            endpoint: {} for endpoint in CONTENT_FIELDS
        }
        self.env_vars: dict[int, dict[str, Any]] = {}
        self.domains: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.failing_ids: set[int] = set()
        self.failing_writes: set[str] = set()
        self.access_status = 200
        self.refresh_status = 200
        self.renewed_token = build_token(30)
        self._next_id = 100

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add(self, endpoint: str, name: str, content: str, app_id: str = APP_ID) -> dict[str, Any]:
        record = {
            "id": self._new_id(),
            "name": name,
            CONTENT_FIELDS[endpoint]: content,
            "app_id": app_id,
        }
        self.collections[endpoint][record["id"]] = record
        return record

    def add_env(self, key: str, value: str, app_id: str = APP_ID) -> dict[str, Any]:
        record = {"id": self._new_id(), "key": key, "value": value, "app_id": app_id}
        self.env_vars[record["id"]] = record
        return record

    def add_domain(
        self, domain: str, framework_version: str = "latest", app_id: str = APP_ID
    ) -> None:
        self.domains.append(
            {"domain": domain, "framework_version": framework_version, "app_id": app_id}
        )

    @property
    def writes(self) -> list[httpx.Request]:
        """Mutating requests, excluding token traffic."""
        return [
            request
            for request in self.requests
            if request.method != "GET" and not request.url.path.startswith("/auth/")
        ]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url="http://test", transport=httpx.MockTransport(self.handler)
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.strip("/")

        if path == "auth/jwt":
            return httpx.Response(self.access_status, json={"token": "access-token"})
        if path == "auth/jwt/refresh":
            return httpx.Response(self.refresh_status, json={"token": self.renewed_token})
        if path == "setup/var" or path.startswith("setup/var/"):
            return self._handle_env(request, path)
        if path == "dev/domain":
            return self._handle_domains(request)

        for endpoint, records in self.collections.items():
            if path == endpoint:
                return self._handle_collection(request, endpoint, records)
            if path.startswith(f"{endpoint}/"):
                item_id = int(path.rsplit("/", 1)[1])
                return self._handle_item(request, endpoint, records, item_id)
        return httpx.Response(404, json={"error": "Not found"})

    def _handle_collection(
        self, request: httpx.Request, endpoint: str, records: dict[int, dict[str, Any]]
    ) -> httpx.Response:
        field = CONTENT_FIELDS[endpoint]
        if request.method == "GET":
            summaries = [
                {key: value for key, value in record.items() if key != field}
                for record in records.values()
            ]
            return httpx.Response(200, json=summaries)

        body = json.loads(request.content)
        if body.get("name") in self.failing_writes:
            return httpx.Response(500, json={"error": "Write rejected"})
        record = {"id": self._new_id(), **body}
        records[record["id"]] = record
        return httpx.Response(201, json=record)

    def _handle_item(
        self,
        request: httpx.Request,
        endpoint: str,
        records: dict[int, dict[str, Any]],
        item_id: int,
    ) -> httpx.Response:
        if item_id in self.failing_ids:
            return httpx.Response(500, json={"error": "Internal failure"})
        record = records.get(item_id)
        if record is None:
            return httpx.Response(404, json={"error": "Not found"})
        if request.method == "GET":
            return httpx.Response(200, json=record)

        body = json.loads(request.content)
        if body.get("name") in self.failing_writes:
            return httpx.Response(500, json={"error": "Write rejected"})
        record.update(body)
        return httpx.Response(200, json=record)

    def _handle_env(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "setup/var":
            if request.method == "GET":
                app_id = request.url.params.get("app_id")
                return httpx.Response(
                    200,
                    json=[v for v in self.env_vars.values() if str(v["app_id"]) == app_id],
                )
            record = {"id": self._new_id(), **json.loads(request.content)}
            self.env_vars[record["id"]] = record
            return httpx.Response(201, json=record)

        item_id = int(path.rsplit("/", 1)[1])
        if request.method == "DELETE":
            self.env_vars.pop(item_id, None)
            return httpx.Response(204)
        self.env_vars[item_id].update(json.loads(request.content))
        return httpx.Response(200, json=self.env_vars[item_id])

    def _handle_domains(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            app_id = request.url.params.get("app_id")
            return httpx.Response(
                200, json=[d for d in self.domains if str(d["app_id"]) == app_id]
            )

        body = json.loads(request.content)
        if request.method == "POST":
            self.domains.append(body)
            return httpx.Response(201, json=body)
        for domain in self.domains:
            if domain["domain"] == body["domain"]:
                domain.update(body)
        return httpx.Response(200, json=body)


@pytest.fixture(autouse=True)
def _clear_cx_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's own credentials out of every test."""
    for key in ("CX_REFRESH_TOKEN", "APP_ID", "CX_BASE_URL"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Factory for JWTs with a chosen remaining lifetime."""
    return build_token


@pytest.fixture
def remote() -> FakeRemote:
    """Fresh in-memory remote API."""
    return FakeRemote()


@pytest.fixture
def cli_config(tmp_path: Path) -> CliConfig:
    """Config for a workspace in a temp directory with a healthy token and AppScope."""
    return CliConfig(
        work_dir=tmp_path,
        refresh_token=build_token(30),
        app_id=APP_ID,
        base_url="http://test",
    )


@pytest.fixture
def api(cli_config: CliConfig, remote: FakeRemote) -> ApiClient:
    """Authenticated client wired to the fake remote."""
    return ApiClient(cli_config, remote.client())


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Working directory with a configured ``.env``, used as the process cwd."""
    (tmp_path / ".env").write_text(
        f'CX_REFRESH_TOKEN="{build_token(30)}"\nAPP_ID={APP_ID}\n', encoding="utf-8"
    )
    monkeypatch.chdir(tmp_path)
    return tmp_path
