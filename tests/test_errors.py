from datetime import date

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from fin_analytics.core.errors import (
    ErrorCode,
    InvalidRangeError,
    NotFoundError,
    create_error_response,
    get_error_code_for_exception,
    register_exception_handlers,
)


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/missing-plan")
    async def missing_plan():
        raise NotFoundError("No active budget plan found for the specified period", "budget", 2025)

    @app.get("/inverted")
    async def inverted():
        raise InvalidRangeError("Start date 2025-03-01 is after end date 2025-02-01",
                                start=date(2025, 3, 1), end=date(2025, 2, 1))

    @app.get("/bad-input")
    async def bad_input():
        raise ValueError("'hourly' is not a valid PeriodType")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("connection string postgresql://secret")

    return TestClient(app, raise_server_exceptions=False)


def test_not_found_maps_to_404(client):
    response = client.get("/missing-plan")

    assert response.status_code == 404
    assert response.json() == {
        "error_code": "not_found",
        "message": "No active budget plan found for the specified period",
    }


def test_invalid_range_maps_to_400(client):
    response = client.get("/inverted")

    assert response.status_code == 400
    assert response.json()["error_code"] == "invalid_range"


def test_value_error_maps_to_validation_error(client):
    response = client.get("/bad-input")

    assert response.status_code == 400
    assert response.json()["error_code"] == "validation_error"
    assert "hourly" not in response.json()["message"]


def test_unexpected_error_is_sanitized(client):
    response = client.get("/boom")

    assert response.status_code == 500
    assert response.json()["error_code"] == "internal_error"
    assert "secret" not in response.json()["message"]


def test_error_codes_for_exceptions():
    assert get_error_code_for_exception(NotFoundError("x")) == (ErrorCode.NOT_FOUND, 404)
    assert get_error_code_for_exception(InvalidRangeError("x")) == (ErrorCode.INVALID_RANGE, 400)
    assert get_error_code_for_exception(KeyError("x")) == (ErrorCode.INSUFFICIENT_DATA, 400)
    assert get_error_code_for_exception(ZeroDivisionError()) == (ErrorCode.INTERNAL_ERROR, 500)


def test_create_error_response_defaults():
    exc = create_error_response(ErrorCode.INVALID_RANGE)

    assert exc.status_code == 400
    assert exc.detail["error_code"] == "invalid_range"
