"""Adapter selection by transport name."""

import logging

from adapters.mock import MockAdapter
from adapters.wifi_direct import WiFiDirectAdapter

logger = logging.getLogger(__name__)

WIFI_NAMES = ("wifi-direct", "wifi")
BLE_NAMES = ("ble", "bluetooth", "noble")
MOCK_NAMES = ("mock",)


def _ble_adapter_class():
    """Return BLEAdapter, or None when bleak cannot be imported on this host."""
    try:
        from adapters.ble import BLEAdapter
    except ImportError as e:
        logger.warning(f"Bluetooth adapter not available: {e}")
        return None
    return BLEAdapter


def get_adapter(adapter_type: str | None = None, on_message=None):
    """
    Build the adapter for `adapter_type`.

    Never raises: unknown names and a missing BLE stack fall back to
    Wi-Fi Direct, and a failing constructor falls back to the mock.
    """
    name = (adapter_type or "wifi-direct").lower()

    try:
        if name in MOCK_NAMES:
            return MockAdapter()

        if name in BLE_NAMES:
            ble_cls = _ble_adapter_class()
            if ble_cls is not None:
                return ble_cls()
            logger.warning(
                "Bluetooth adapter requested but not available; falling back to Wi-Fi Direct "
                "(install 'bleak' to use Bluetooth)"
            )
        elif name not in WIFI_NAMES:
            logger.warning(f"Unknown adapter type '{adapter_type}'; using Wi-Fi Direct")

        return WiFiDirectAdapter(on_message=on_message)
    except Exception as e:
        logger.error(f"Failed to create '{name}' adapter, using mock: {e}", exc_info=True)
        return MockAdapter()
