"""
Tests for the UUID service endpoints
"""
import dataclasses
import logging
import re
import time
import uuid

import pytest
from fastapi.testclient import TestClient

import uuid_service.app
from uuid_service.app import build_app, compose_message, create_app
from uuid_service.config import ServiceSettings, load_settings

CANONICAL = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def assert_random_uuid(value: str):
    assert CANONICAL.match(value), f"not a canonical UUID: {value!r}"
    parsed = uuid.UUID(value)
    assert parsed.version == 4
    assert parsed.variant == uuid.RFC_4122


@pytest.fixture
def client():
    app = create_app(ServiceSettings(instance_id="7", slow_delay_sec=0.05))
    return TestClient(app)


def test_get_returns_random_uuid_and_instance(client):
    response = client.get("/api/v1/uuid/get")

    assert response.status_code == 200
    data = response.json()
    assert set(data) == {"uuid", "instanceId"}
    assert_random_uuid(data["uuid"])
    assert data["instanceId"] == "7"


def test_consecutive_gets_differ(client):
    first = client.get("/api/v1/uuid/get").json()["uuid"]
    second = client.get("/api/v1/uuid/get").json()["uuid"]
    assert first != second


def test_get_id_without_token_renders_null(client):
    response = client.get("/api/v1/uuid/get-id")

    assert response.status_code == 200
    message = response.json()["message"]
    assert message.startswith("id null : uuid ")
    assert_random_uuid(message[len("id null : uuid "):])


def test_get_id_with_query_token(client):
    data = client.get("/api/v1/uuid/get-id", params={"id": "abc"}).json()

    assert data["message"].startswith("id abc : uuid ")
    assert data["instanceId"] == "7"


def test_path_variant_embeds_token(client):
    response = client.get("/api/v1/uuid/path/get/42")

    assert response.status_code == 200
    match = re.fullmatch(r"id 42 : uuid (\S+)", response.json()["message"])
    assert match
    assert_random_uuid(match.group(1))


def test_path_variant_requires_token(client):
    assert client.get("/api/v1/uuid/path/get/").status_code == 404


def test_forced_error_is_unconditional(client):
    for path in ("/api/v1/uuid/get/error", "/api/v1/uuid/get/error?id=1"):
        for _ in range(3):
            response = client.get(path)
            assert response.status_code == 500
            assert response.content == b""


def test_slow_endpoint_waits_then_answers(client):
    start = time.monotonic()
    response = client.get("/api/v1/uuid/get-slow")
    elapsed = time.monotonic() - start

    assert response.status_code == 200
    assert elapsed >= 0.05
    assert_random_uuid(response.json()["uuid"])


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "instanceId": "7"}


def test_generation_is_logged_through_injected_logger(caplog):
    log = logging.getLogger("test.uuid_service")
    client = TestClient(create_app(ServiceSettings(instance_id="9"), logger=log))

    with caplog.at_level(logging.INFO, logger="test.uuid_service"):
        value = client.get("/api/v1/uuid/get").json()["uuid"]

    records = [r for r in caplog.records if r.name == "test.uuid_service"]
    assert any(value in r.getMessage() for r in records)


def test_compose_message():
    assert compose_message(None, "u") == "id null : uuid u"
    assert compose_message("", "u") == "id  : uuid u"
    assert compose_message("x", "u") == "id x : uuid u"


def test_settings_defaults():
    settings = load_settings({})
    assert settings.instance_id == "default"
    assert settings.slow_delay_sec == 20.0


def test_settings_from_environment():
    settings = load_settings({"INSTANCE_ID": "2", "SLOW_DELAY_SEC": "1.5", "LOG_LEVEL": "debug"})
    assert settings == ServiceSettings(instance_id="2", slow_delay_sec=1.5, log_level="DEBUG")


@pytest.mark.parametrize("raw", ["soon", "-1"])
def test_settings_reject_bad_delay(raw):
    with pytest.raises(ValueError):
        load_settings({"SLOW_DELAY_SEC": raw})


def test_settings_are_immutable():
    settings = load_settings({})
    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.instance_id = "other"


def test_app_is_built_on_demand(monkeypatch):
    assert not hasattr(uuid_service.app, "app")

    monkeypatch.setenv("INSTANCE_ID", "5")
    monkeypatch.setenv("SLOW_DELAY_SEC", "0")
    client = TestClient(build_app())

    assert client.get("/health").json() == {"status": "ok", "instanceId": "5"}
