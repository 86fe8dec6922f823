from __future__ import annotations

import asyncio
import json
import os
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import delete

TEST_DB_PATH = Path(__file__).resolve().parent / "test.db"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"

from sitepass.app.main import app  # noqa: E402  pylint: disable=wrong-import-position
from sitepass.app.models import (  # noqa: E402  pylint: disable=wrong-import-position
    Base,
    ProfileRecord,
    SessionLocal,
    SettingRecord,
    engine,
)
from sitepass.app.store import ProfileStore  # noqa: E402  pylint: disable=wrong-import-position


@dataclass
class SimpleResponse:
    status_code: int
    body: bytes

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body.decode("utf-8"))


class SimpleClient:
    def __init__(self) -> None:
        self._app = app

    def _run_request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        body: bytes,
    ) -> SimpleResponse:
        path, _, query = url.partition("?")
        unquoted_path = urllib.parse.unquote(path)
        header_items = [
            (key.encode("latin-1"), value.encode("latin-1"))
            for key, value in headers.items()
        ]

        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method.upper(),
            "path": unquoted_path,
            "raw_path": path.encode("ascii", "ignore"),
            "root_path": "",
            "scheme": "http",
            "query_string": query.encode("latin-1"),
            "headers": header_items,
            "client": ("testclient", 1234),
            "server": ("testserver", 80),
        }

        messages: list[dict[str, Any]] = []
        body_sent = False

        async def receive() -> dict[str, Any]:
            nonlocal body_sent
            if body_sent:
                return {"type": "http.disconnect"}
            body_sent = True
            return {"type": "http.request", "body": body, "more_body": False}

        async def send(message: dict[str, Any]) -> None:
            messages.append(message)

        asyncio.run(self._app(scope, receive, send))

        status = 500
        chunks: list[bytes] = []
        for message in messages:
            if message["type"] == "http.response.start":
                status = message["status"]
            elif message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))

        return SimpleResponse(status, b"".join(chunks))

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: Any | None = None,
        data: dict[str, str] | None = None,
    ) -> SimpleResponse:
        prepared_headers = {k.lower(): v for k, v in (headers or {}).items()}
        prepared_headers.setdefault("host", "testserver")
        body = b""
        if json_body is not None and data is not None:
            raise ValueError("json_body and data cannot be provided together")
        if json_body is not None:
            body = json.dumps(json_body, ensure_ascii=False).encode("utf-8")
            prepared_headers.setdefault("content-type", "application/json")
        elif data is not None:
            body = urllib.parse.urlencode(data).encode("utf-8")
            prepared_headers.setdefault(
                "content-type", "application/x-www-form-urlencoded"
            )
        return self._run_request(method, url, headers=prepared_headers, body=body)

    def get(self, url: str, *, headers: dict[str, str] | None = None) -> SimpleResponse:
        return self.request("GET", url, headers=headers)

    def post(
        self,
        url: str,
        *,
        json: Any | None = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> SimpleResponse:
        return self.request("POST", url, headers=headers, json_body=json, data=data)

    def put(
        self,
        url: str,
        *,
        json: Any | None = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> SimpleResponse:
        return self.request("PUT", url, headers=headers, json_body=json, data=data)

    def delete(self, url: str, *, headers: dict[str, str] | None = None) -> SimpleResponse:
        return self.request("DELETE", url, headers=headers)


def _reset_tables() -> None:
    with SessionLocal() as session:
        session.execute(delete(ProfileRecord))
        session.execute(delete(SettingRecord))
        session.commit()


@pytest.fixture(scope="session", autouse=True)
def _prepare_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()


@pytest.fixture(autouse=True)
def _clean_database() -> None:
    _reset_tables()
    app.state.store = ProfileStore(SessionLocal)
    app.state.store.ensure_default_profile()
    yield
    _reset_tables()


@pytest.fixture()
def store() -> ProfileStore:
    return app.state.store


@pytest.fixture()
def client() -> SimpleClient:
    return SimpleClient()
