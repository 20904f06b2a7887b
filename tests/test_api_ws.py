"""Tests for FastAPI WebSocket /stream endpoint.

Tests verify:
- WebSocket connection and disconnection
- Push of each new reading as JSON with backend keys
- Only readings that arrive after the client connects are pushed
"""

import time

import pytest
from fastapi.testclient import TestClient

from api import main as api_module
from compression_lib.transport import DeviceLink, PortRegistry
from data_store.store import LocalSessionStore
from fakes.fake_device import FakeCompressionDevice

PORT = "/dev/ttyACM0"


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singletons before each test."""
    api_module._controller = None
    api_module._store = LocalSessionStore()
    api_module._registry = PortRegistry(authorized=[PORT], is_present=lambda path: True)
    yield
    # Cleanup
    if api_module._controller is not None:
        api_module._controller.shutdown()
    api_module._controller = None
    api_module._store = None
    api_module._registry = None


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(api_module.app)


@pytest.fixture
def fake_device():
    return FakeCompressionDevice(streaming=False)


@pytest.fixture
def connected(client, monkeypatch, fake_device):
    """Connect the API controller to a FakeCompressionDevice."""
    def mock_open(port, baud):
        return DeviceLink(fake_device, port)

    monkeypatch.setattr(DeviceLink, "open", mock_open)
    client.post("/session", json={"patient_id": "p1"})
    client.post("/ports/select", params={"port": PORT})
    assert client.post("/connect").status_code == 200
    return fake_device


def test_websocket_connect_disconnect(client):
    """Test that a client can open and close the stream without data."""
    with client.websocket_connect("/stream"):
        time.sleep(0.2)


def test_websocket_streams_new_readings(client, connected):
    """Test that readings are pushed in arrival order with clamped values."""
    with client.websocket_connect("/stream") as websocket:
        connected.feed('{"pressure": 250, "temperature": 31, "cycle": 1}')
        connected.feed('{"pressure": 18.5, "temperature": 31, "cycle": 1}')

        first = websocket.receive_json()
        second = websocket.receive_json()

    assert first["measuredPressure"] == 200.0
    assert first["temperature"] == 31.0
    assert first["cycleIndex"] == 1
    assert "recordedAt" in first
    assert second["measuredPressure"] == 18.5


def test_websocket_skips_readings_before_connect(client, connected):
    """Test that only readings arriving after the client connects are pushed."""
    connected.feed('{"pressure": 5, "temperature": 30}')
    deadline = time.time() + 2.0
    while not client.get("/status").json()["buffered"] and time.time() < deadline:
        time.sleep(0.02)

    with client.websocket_connect("/stream") as websocket:
        connected.feed('{"pressure": 6, "temperature": 30}')
        message = websocket.receive_json()

    assert message["measuredPressure"] == 6.0
