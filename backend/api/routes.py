"""REST API routes for ColdSend."""

import logging

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from config import MAX_UPLOAD_BYTES, SCAN_TIMEOUT_MS
from adapters.errors import (
    DeviceNotFound,
    NoTarget,
    PayloadTooLarge,
    PeripheralNotFound,
    PortExhausted,
    RadioNotReady,
    ScanInProgress,
    TargetNotFound,
    TransferError,
    Unsupported,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_manager = None

_STATUS_CODES = {
    DeviceNotFound: 404,
    PeripheralNotFound: 404,
    TargetNotFound: 404,
    ScanInProgress: 409,
    Unsupported: 400,
    NoTarget: 400,
    PayloadTooLarge: 400,
    RadioNotReady: 503,
    PortExhausted: 503,
}


def init_routes(manager) -> None:
    """Inject the transfer manager into the routes module."""
    global _manager
    _manager = manager


def _http_error(exc: TransferError) -> HTTPException:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)),
        500,
    )
    return HTTPException(status_code=status_code, detail=str(exc) or type(exc).__name__)


# --- Status ---

@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/status")
async def get_status():
    return {"ok": True, **_manager.get_status()}


# --- Devices ---

class ScanBody(BaseModel):
    timeout_ms: int = SCAN_TIMEOUT_MS


class DeviceBody(BaseModel):
    device_id: str


@router.post("/scan-devices")
async def scan_devices(body: ScanBody | None = None):
    timeout_ms = body.timeout_ms if body else SCAN_TIMEOUT_MS
    try:
        devices = await _manager.scan(timeout_ms)
    except TransferError as e:
        raise _http_error(e)
    return {"success": True, "devices": [d.model_dump() for d in devices]}


@router.get("/discovered-devices")
async def discovered_devices():
    return {"devices": [d.model_dump() for d in _manager.discovered_devices.values()]}


@router.post("/connect-device")
async def connect_device(body: DeviceBody):
    try:
        connected = await _manager.connect(body.device_id)
    except TransferError as e:
        raise _http_error(e)
    if not connected:
        raise HTTPException(status_code=500, detail="Failed to connect to device")
    device = _manager.connected_devices[body.device_id]
    return {"success": True, "device": device.model_dump()}


@router.post("/disconnect-device")
async def disconnect_device(body: DeviceBody):
    disconnected = await _manager.disconnect(body.device_id)
    if not disconnected:
        raise HTTPException(status_code=500, detail="Failed to disconnect device")
    return {"success": True}


# --- Protocol / mode ---

class ProtocolBody(BaseModel):
    protocol: str


class ConnectionModeBody(BaseModel):
    mode: str


@router.post("/set-protocol")
async def set_protocol(body: ProtocolBody):
    try:
        adapter_id = await _manager.set_protocol(body.protocol)
    except TransferError as e:
        raise _http_error(e)
    return {"success": True, "protocol": body.protocol, "adapter_id": adapter_id}


@router.post("/set-connection-mode")
async def set_connection_mode(body: ConnectionModeBody):
    try:
        mode = _manager.set_connection_mode(body.mode)
    except TransferError as e:
        raise _http_error(e)
    return {"success": True, "mode": mode}


# --- Sending ---

class TextBody(BaseModel):
    text: str
    target: str | None = None


@router.post("/send-text")
async def send_text(body: TextBody):
    if not body.text:
        raise HTTPException(status_code=400, detail="Missing text")
    job_id = _manager.submit_text(body.text, target=body.target)
    return {"success": True, "job_id": job_id}


@router.post("/send-file")
async def send_file(
    file: UploadFile = File(...),
    target: str | None = Form(None),
    broadcast: bool = Form(False),
):
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    filename = file.filename or "upload.bin"

    if broadcast:
        try:
            client_count = await _manager.broadcast_file(data, filename, len(data))
        except TransferError as e:
            raise _http_error(e)
        return {
            "success": True,
            "client_count": client_count,
            "filename": filename,
            "size": len(data),
            "broadcast": True,
        }

    job_id = _manager.submit_file(data, filename, len(data), target=target)
    job = _manager.get_job(job_id)
    return {
        "success": True,
        "job_id": job_id,
        "status": job.status.value,
        "filename": filename,
        "size": len(data),
    }


class BroadcastTextBody(BaseModel):
    text: str


@router.post("/broadcast-text")
async def broadcast_text(body: BroadcastTextBody):
    if not body.text:
        raise HTTPException(status_code=400, detail="Missing text")
    client_count = await _manager.broadcast_text(body.text)
    return {"success": True, "client_count": client_count}


@router.get("/jobs/{job_id}")
async def get_job(job_id: str):
    job = _manager.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.model_dump()
