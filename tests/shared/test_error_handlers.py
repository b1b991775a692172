"""Tests for the error taxonomy and its HTTP mapping."""

import pytest
from fastapi import FastAPI, status
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError

from src.features.auth.exceptions import AccountLocked, TokenExpired
from src.shared.error_handlers import register_error_handlers
from src.shared.errors import (
    AppError,
    AuthorizationError,
    ConflictError,
    ErrorKind,
    InputError,
    InternalError,
    NotFoundError,
)


class Payload(BaseModel):
    name: str


def _build_app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/raise/{kind}")
    async def raise_kind(kind: str):
        errors: dict[str, AppError] = {
            "input": InputError("Bad input"),
            "token": TokenExpired(),
            "forbidden": AuthorizationError(),
            "missing": NotFoundError(),
            "conflict": ConflictError(),
            "locked": AccountLocked(),
            "internal": InternalError("Identity provider unavailable"),
        }
        raise errors[kind]

    @app.get("/database")
    async def database_down():
        raise OperationalError("SELECT 1", {}, Exception("connection refused to db-host:5432"))

    @app.get("/timeout")
    async def timeout():
        raise TimeoutError("statement timed out")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internal state")

    @app.post("/validate")
    async def validate(payload: Payload):
        return payload

    return app


@pytest.fixture
async def error_client():
    transport = ASGITransport(app=_build_app(), raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestAppErrors:
    @pytest.mark.parametrize(
        ("kind", "expected_status", "expected_detail"),
        [
            ("input", status.HTTP_400_BAD_REQUEST, "Bad input"),
            ("token", status.HTTP_401_UNAUTHORIZED, "Invalid or expired token"),
            ("forbidden", status.HTTP_403_FORBIDDEN, "Insufficient permissions"),
            ("missing", status.HTTP_404_NOT_FOUND, "Resource not found"),
            ("conflict", status.HTTP_409_CONFLICT, "Resource conflict"),
            ("locked", status.HTTP_429_TOO_MANY_REQUESTS, "Account temporarily locked. Try again later."),
            ("internal", status.HTTP_500_INTERNAL_SERVER_ERROR, "Identity provider unavailable"),
        ],
    )
    async def test_kind_maps_to_status(self, error_client, kind, expected_status, expected_detail):
        response = await error_client.get(f"/raise/{kind}")
        assert response.status_code == expected_status
        assert response.json() == {"detail": expected_detail}

    async def test_authentication_errors_carry_challenge_header(self, error_client):
        response = await error_client.get("/raise/token")
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_other_errors_have_no_challenge_header(self, error_client):
        response = await error_client.get("/raise/forbidden")
        assert "www-authenticate" not in response.headers

    def test_every_kind_has_a_status(self):
        from src.shared.error_handlers import STATUS_BY_KIND

        assert set(STATUS_BY_KIND) == set(ErrorKind)


class TestFailClosed:
    async def test_database_error_is_generic_500(self, error_client):
        response = await error_client.get("/database")
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"detail": "Internal server error"}
        assert "db-host" not in response.text

    async def test_timeout_is_generic_500(self, error_client):
        response = await error_client.get("/timeout")
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"detail": "Internal server error"}

    async def test_unhandled_error_is_generic_500(self, error_client):
        response = await error_client.get("/boom")
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "secret internal state" not in response.text


class TestValidationErrors:
    async def test_validation_error_is_400(self, error_client):
        response = await error_client.post("/validate", json={})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

        data = response.json()
        assert data["detail"] == "Invalid request"
        assert data["errors"][0]["loc"] == ["body", "name"]
        assert data["errors"][0]["type"] == "missing"
