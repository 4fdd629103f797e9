"""Shared test doubles: a frozen clock, a fake provider API and bearer tokens."""

import time
from datetime import datetime, timedelta

import httpx
from jose import jwt

from tradiesync.config import settings

TEST_USER_ID = "user-7f3a9c"
OTHER_USER_ID = "user-2b81d4"

FROZEN_NOW = datetime(2026, 3, 2, 9, 30, 0)


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _without_query(url: httpx.URL) -> str:
    return str(url).split("?", 1)[0]


class FakeProviderAPI:
    """
    httpx.MockTransport handler standing in for every provider endpoint.

    Routes are matched on method and URL without the query string. Each
    route is either a fixed (status, json, headers) response or a callable
    taking the request. Unrouted requests get a 404.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], object] = {}

    def add(self, method: str, url: str, status: int = 200, json=None, headers=None, handler=None) -> None:
        if handler is None:
            def handler(request, status=status, json=json, headers=headers):
                return httpx.Response(status, json=json, headers=headers)
        self._routes[(method.upper(), url)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = _without_query(request.url)
        handler = self._routes.get((request.method, url))
        if handler is None:
            return httpx.Response(404, text=f"no route for {request.method} {url}")
        return handler(request)

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and _without_query(r.url) == url
        ]


def bearer_token(user_id: str = TEST_USER_ID, **claims) -> str:
    payload = {
        "sub": user_id,
        "email": "tradie@example.com",
        "aud": settings.AUTH_JWT_AUDIENCE,
        "exp": int(time.time()) + 3600,
        **claims,
    }
    return jwt.encode(payload, settings.AUTH_JWT_SECRET, algorithm=settings.AUTH_JWT_ALGORITHM)


def auth_headers(user_id: str = TEST_USER_ID) -> dict[str, str]:
    return {"Authorization": f"Bearer {bearer_token(user_id)}"}
