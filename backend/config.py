"""Application-wide configuration constants."""

import os
import platform
from pathlib import Path

# --- Identity ---
DEVICE_ID = platform.node()  # hostname, stable across restarts
DEVICE_NAME = os.getenv("DEVICE_NAME", f"ColdSend-{DEVICE_ID}")

# --- HTTP ---
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("PORT", "4000"))

# --- Transport selection ---
TRANSFER_ADAPTER = os.getenv("TRANSFER_ADAPTER", "wifi-direct")

# --- Wi-Fi Direct (UDP) ---
DISCOVERY_PORT = int(os.getenv("WIFI_DISCOVERY_PORT", "8888"))
TRANSFER_PORT = int(os.getenv("WIFI_TRANSFER_PORT", "8889"))
BROADCAST_ADDRESS = os.getenv("WIFI_BROADCAST_ADDRESS", "255.255.255.255")
DISCOVERY_PORT_RETRIES = int(os.getenv("DISCOVERY_PORT_RETRIES", "10"))
SCAN_TIMEOUT_MS = int(os.getenv("SCAN_TIMEOUT_MS", "10000"))
PING_TIMEOUT = float(os.getenv("PING_TIMEOUT", "3"))  # seconds
MAX_DATAGRAM_SIZE = 65507  # largest UDP payload over IPv4

# --- BLE ---
BLE_SERVICE_UUID = os.getenv("BLE_SERVICE_UUID") or None  # e.g. "ffe0"
BLE_CHARACTERISTIC_UUID = os.getenv("BLE_CHARACTERISTIC_UUID") or None  # e.g. "ffe1"
BLE_TARGET_NAME = os.getenv("BLE_TARGET_NAME") or None
BLE_MTU = int(os.getenv("BLE_MTU", "180"))
BLE_CHUNK_DELAY = float(os.getenv("BLE_CHUNK_DELAY", "0.01"))  # seconds
BLE_SCAN_TIMEOUT_MS = int(os.getenv("BLE_SCAN_TIMEOUT_MS", "10000"))
BLE_READY_TIMEOUT = float(os.getenv("BLE_READY_TIMEOUT", "5"))  # seconds

# --- Queue / uploads ---
UPLOAD_DIR = os.getenv(
    "UPLOAD_DIR",
    str(Path(__file__).parent.parent / "uploads"),
)
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))
JOB_HISTORY_SIZE = int(os.getenv("JOB_HISTORY_SIZE", "100"))

# --- Broadcast ---
MAX_BROADCAST_BYTES = int(os.getenv("MAX_BROADCAST_BYTES", str(10 * 1024 * 1024)))
SSE_KEEPALIVE = float(os.getenv("SSE_KEEPALIVE", "15"))  # seconds
SUBSCRIBER_QUEUE_SIZE = 64
