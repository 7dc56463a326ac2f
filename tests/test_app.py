import time

import pytest

pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from wlan_pilot.app import create_app
from wlan_pilot.backend import NetworkContext
from wlan_pilot.connection import ConnectionOrchestrator
from wlan_pilot.errors import ControlPlaneUnavailableError, NetworkError, PermissionDeniedError
from wlan_pilot.hotspot import HotspotManager
from wlan_pilot.models import HotspotClient, WiFiNetwork
from wlan_pilot.nat import NatRuleReconciler


@pytest.fixture
def client(context, fake_runner) -> TestClient:
    orchestrator = ConnectionOrchestrator(context, sleep=lambda _: None)
    hotspots = HotspotManager(
        context,
        nat=NatRuleReconciler(fake_runner, is_privileged=lambda: False),
        sleep=lambda _: None,
    )
    app = create_app(context=context, orchestrator=orchestrator, hotspots=hotspots)
    return TestClient(app)


def _wait_for_outcome(client: TestClient) -> dict[str, object]:
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        payload = client.get("/api/wifi/attempt").json()
        attempt = payload["attempt"]
        if attempt and attempt["outcome"]:
            return attempt
        time.sleep(0.02)
    raise AssertionError("connection attempt did not finish")


def test_status_and_networks(client: TestClient, fake_backend) -> None:
    fake_backend.active_profile = "Home"
    fake_backend.networks = [
        WiFiNetwork(ssid="Home", signal=80, security="WPA2", known=True, active=True),
        WiFiNetwork(ssid="Cafe", signal=40),
    ]
    status = client.get("/api/wifi/status").json()
    assert status["connected"] is True
    assert status["ssid"] == "Home"
    assert status["state"] == "idle"

    networks = client.get("/api/wifi/networks").json()["networks"]
    assert [network["ssid"] for network in networks] == ["Home", "Cafe"]
    assert networks[0]["requires_password"] is True
    assert networks[1]["requires_password"] is False


def test_connect_flow(client: TestClient, fake_backend) -> None:
    response = client.post("/api/wifi/connect", json={"ssid": "OpenCafe"})
    assert response.status_code == 200
    assert response.json()["ssid"] == "OpenCafe"

    attempt = _wait_for_outcome(client)
    assert attempt["outcome"]["outcome"] == "connected"
    assert client.post("/api/wifi/cancel").json() == {"cancelled": False}


def test_connect_validation_errors(client: TestClient) -> None:
    response = client.post("/api/wifi/connect", json={"ssid": "x" * 40})
    assert response.status_code == 400
    response = client.post("/api/wifi/connect", json={"ssid": "Home", "password": "short", "security": "WPA2"})
    assert response.status_code == 400
    assert "8-63" in response.json()["detail"]


def test_disconnect(client: TestClient, fake_backend) -> None:
    fake_backend.active_profile = "Home"
    response = client.post("/api/wifi/disconnect", json={"interface": "wlan0"})
    assert response.json() == {"disconnected": True}


def test_hotspot_crud(client: TestClient, fake_backend) -> None:
    payload = {
        "name": "lab",
        "ssid": "Lab Net",
        "password": "labpass123",
        "internet_interface": "eth0",
        "gateway": "192.168.12.1",
    }
    response = client.post("/api/hotspots", json=payload)
    assert response.status_code == 201
    assert "password" not in response.json()
    assert client.post("/api/hotspots", json=payload).status_code == 400

    assert [item["name"] for item in client.get("/api/hotspots").json()["hotspots"]] == ["lab"]

    started = client.post("/api/hotspots/lab/start").json()
    assert started["state"] == "active"

    fake_backend.clients["lab"] = [HotspotClient("aa:bb:cc:dd:ee:ff", "192.168.12.30", "laptop")]
    clients = client.get("/api/hotspots/lab/clients").json()["clients"]
    assert clients[0]["hostname"] == "laptop"

    detail = client.get("/api/hotspots/lab").json()
    assert detail["status"]["client_count"] == 1

    assert client.post("/api/hotspots/lab/stop").json()["state"] == "stopped"
    assert client.delete("/api/hotspots/lab").json() == {"deleted": "lab"}
    assert client.get("/api/hotspots/lab").status_code == 404


def test_hotspot_payload_validation(client: TestClient) -> None:
    response = client.post("/api/hotspots", json={"name": "lab", "password": "labpass123", "band": "60ghz"})
    assert response.status_code == 400
    response = client.post("/api/hotspots", json={"name": "lab", "password": "short"})
    assert response.status_code == 400


def test_unknown_hotspot_is_404(client: TestClient) -> None:
    assert client.post("/api/hotspots/ghost/start").status_code == 404
    assert client.delete("/api/hotspots/ghost").status_code == 404


def test_diagnostics_queue_is_drained(client: TestClient) -> None:
    client.post("/api/wifi/connect", json={"ssid": ""})
    entries = client.get("/api/diagnostics/queue").json()["entries"]
    assert entries and entries[0]["severity"] == "error"
    assert client.get("/api/diagnostics/queue").json() == {"entries": []}


def test_interfaces(client: TestClient) -> None:
    interfaces = client.get("/api/interfaces").json()["interfaces"]
    assert interfaces[0]["name"] == "wlan0"
    assert interfaces[0]["supports_ap"] is True


def test_missing_control_plane_is_503(settings, fake_iw, fake_runner) -> None:
    context = NetworkContext(settings, runner=fake_runner, iw=fake_iw, backends=[])
    client = TestClient(create_app(context=context))
    assert client.get("/api/wifi/networks").status_code == 503
    assert client.get("/api/hotspots").json() == {"hotspots": []}


def test_5ghz_hotspot_defaults_to_auto_channel(client: TestClient) -> None:
    response = client.post("/api/hotspots", json={"name": "fast", "password": "fastpass1", "band": "a"})
    assert response.status_code == 201
    assert response.json()["channel"] == 0
    response = client.post(
        "/api/hotspots", json={"name": "mixed", "password": "fastpass1", "band": "a", "channel": 6}
    )
    assert response.status_code == 400


@pytest.mark.parametrize(
    "error, status_code",
    [
        (NetworkError("Error: nmcli exploded"), 502),
        (PermissionDeniedError("Not authorized to control networking."), 403),
        (ControlPlaneUnavailableError("No network control plane is available"), 503),
    ],
)
def test_status_errors_use_shared_mapping(
    client: TestClient, monkeypatch: pytest.MonkeyPatch, error, status_code: int
) -> None:
    def fail(interface: str | None = None) -> None:
        raise error

    monkeypatch.setattr(client.app.state.orchestrator, "status", fail)
    response = client.get("/api/wifi/status")
    assert response.status_code == status_code
