"""FastAPI application exposing the Wi-Fi and hotspot controls."""
from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .backend import NetworkContext
from .config import DEFAULT_CONFIG_PATH, load_settings
from .connection import ConnectionOrchestrator
from .errors import (
    ControlPlaneUnavailableError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    WiFiError,
)
from .hotspot import HotspotManager
from .models import DEFAULT_CHANNEL, Band, HotspotConfig, SecurityType, ShareMethod
from .version import APP_VERSION


class ConnectPayload(BaseModel):
    ssid: str
    password: str | None = None
    security: str | None = None
    interface: str | None = None


class DisconnectPayload(BaseModel):
    interface: str | None = None


class HotspotPayload(BaseModel):
    name: str
    ssid: str | None = None
    password: str | None = None
    security: str = SecurityType.WPA2.value
    wifi_interface: str | None = None
    internet_interface: str | None = None
    gateway: str | None = None
    channel: int | None = Field(default=None, ge=0)
    band: str = Band.BG.value
    hidden: bool = False
    client_isolation: bool = False
    mac_filtering: bool = False
    share_method: str = ShareMethod.NAT.value


def _status_code(exc: WiFiError) -> int:
    if isinstance(exc, InvalidInputError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, PermissionDeniedError):
        return 403
    if isinstance(exc, ControlPlaneUnavailableError):
        return 503
    return 502


def create_app(
    config_path: Path | str = DEFAULT_CONFIG_PATH,
    *,
    context: NetworkContext | None = None,
    orchestrator: ConnectionOrchestrator | None = None,
    hotspots: HotspotManager | None = None,
) -> FastAPI:
    app = FastAPI(title="wlan-pilot", version=APP_VERSION)

    logger = logging.getLogger(__name__)

    if context is None:
        context = NetworkContext(load_settings(config_path))
    if orchestrator is None:
        orchestrator = ConnectionOrchestrator(context)
    if hotspots is None:
        hotspots = HotspotManager(context)

    app.state.context = context
    app.state.orchestrator = orchestrator
    app.state.hotspots = hotspots

    def _http_error(exc: WiFiError) -> HTTPException:
        return HTTPException(status_code=_status_code(exc), detail=str(exc))

    def _payload_to_config(payload: HotspotPayload) -> HotspotConfig:
        try:
            security = SecurityType.parse(payload.security)
            band = Band.parse(payload.band)
            share_method = ShareMethod.parse(payload.share_method)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        channel = payload.channel
        if channel is None:
            channel = 0 if band is Band.A else DEFAULT_CHANNEL
        return HotspotConfig(
            name=payload.name.strip(),
            ssid=(payload.ssid or payload.name).strip(),
            password=payload.password or "",
            security=security,
            wifi_interface=payload.wifi_interface or context.settings.interface or "wlan0",
            internet_interface=payload.internet_interface or None,
            gateway=payload.gateway or None,
            channel=channel,
            band=band,
            hidden=payload.hidden,
            client_isolation=payload.client_isolation,
            mac_filtering=payload.mac_filtering,
            share_method=share_method,
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:  # pragma: no cover - framework hook
        orchestrator.cancel()
        context.queue.shutdown()

    # ------------------------------ station --------------------------------
    @app.get("/api/wifi/status")
    async def get_wifi_status() -> dict[str, object | None]:
        try:
            status = await run_in_threadpool(orchestrator.status)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        payload = status.to_dict()
        payload["state"] = orchestrator.state.value
        return payload

    @app.get("/api/wifi/networks")
    async def list_wifi_networks(rescan: bool = True) -> dict[str, object]:
        try:
            networks = await run_in_threadpool(orchestrator.scan, rescan=rescan)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        return {"networks": [network.to_dict() for network in networks]}

    @app.post("/api/wifi/connect")
    async def connect_wifi(payload: ConnectPayload) -> dict[str, object | None]:
        try:
            attempt = await run_in_threadpool(
                orchestrator.connect,
                payload.ssid,
                payload.password,
                security=payload.security,
                interface=payload.interface,
            )
        except WiFiError as exc:
            raise _http_error(exc) from exc
        return attempt.to_dict()

    @app.get("/api/wifi/attempt")
    async def get_connection_attempt() -> dict[str, object | None]:
        attempt = orchestrator.current_attempt
        if attempt is None:
            return {"state": orchestrator.state.value, "attempt": None}
        return {"state": orchestrator.state.value, "attempt": attempt.to_dict()}

    @app.post("/api/wifi/cancel")
    async def cancel_connection() -> dict[str, object]:
        cancelled = orchestrator.cancel()
        return {"cancelled": cancelled}

    @app.post("/api/wifi/disconnect")
    async def disconnect_wifi(payload: DisconnectPayload | None = None) -> dict[str, object]:
        interface = payload.interface if payload else None
        try:
            disconnected = await run_in_threadpool(orchestrator.disconnect, interface)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        return {"disconnected": disconnected}

    # ------------------------------ hotspots -------------------------------
    @app.get("/api/hotspots")
    async def list_hotspots() -> dict[str, object]:
        try:
            configs = await run_in_threadpool(hotspots.list)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        return {"hotspots": [config.to_dict() for config in configs]}

    @app.post("/api/hotspots", status_code=201)
    async def create_hotspot(payload: HotspotPayload) -> dict[str, object | None]:
        config = _payload_to_config(payload)
        try:
            created = await run_in_threadpool(hotspots.create, config)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        return created.to_dict()

    @app.get("/api/hotspots/{name}")
    async def get_hotspot(name: str) -> dict[str, object | None]:
        try:
            config = await run_in_threadpool(hotspots.get, name)
            status = await run_in_threadpool(hotspots.status, name)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        payload = config.to_dict()
        payload["status"] = status.to_dict()
        return payload

    @app.post("/api/hotspots/{name}/start")
    async def start_hotspot(name: str) -> dict[str, object | None]:
        try:
            status = await run_in_threadpool(hotspots.start, name)
        except WiFiError as exc:
            logger.warning("Unable to start hotspot %s: %s", name, exc)
            raise _http_error(exc) from exc
        return status.to_dict()

    @app.post("/api/hotspots/{name}/stop")
    async def stop_hotspot(name: str) -> dict[str, object | None]:
        try:
            status = await run_in_threadpool(hotspots.stop, name)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        return status.to_dict()

    @app.delete("/api/hotspots/{name}")
    async def delete_hotspot(name: str) -> dict[str, object]:
        try:
            await run_in_threadpool(hotspots.delete, name)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        return {"deleted": name}

    @app.get("/api/hotspots/{name}/clients")
    async def list_hotspot_clients(name: str) -> dict[str, object]:
        clients = await run_in_threadpool(hotspots.clients, name)
        return {"clients": [client.to_dict() for client in clients]}

    # ----------------------------- diagnostics -----------------------------
    @app.get("/api/diagnostics/queue")
    async def drain_diagnostics() -> dict[str, object]:
        entries = context.queue.drain()
        return {"entries": [entry.to_dict() for entry in entries]}

    @app.get("/api/interfaces")
    async def list_interfaces() -> dict[str, object]:
        def _collect() -> list[dict[str, object | None]]:
            names = context.backend.list_wifi_interfaces()
            return [context.iw.interface_info(name).to_dict() for name in names]

        try:
            interfaces = await run_in_threadpool(_collect)
        except WiFiError as exc:
            raise _http_error(exc) from exc
        return {"interfaces": interfaces}

    return app


__all__ = ["create_app"]
