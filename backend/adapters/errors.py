"""Transport error taxonomy shared by every adapter."""


class TransferError(Exception):
    """Base error for transport and queue failures."""


class ScanInProgress(TransferError):
    """Raised when a scan is requested while another one is running."""


class Unsupported(TransferError):
    """Raised when the active adapter lacks the requested capability."""


class PortExhausted(TransferError):
    """Raised when no discovery port could be bound."""


class DeviceUnreachable(TransferError):
    """Raised when a device does not answer a reachability probe."""


class PeripheralNotFound(TransferError):
    """Raised when a BLE peripheral is missing from the scan cache."""


class RadioNotReady(TransferError):
    """Raised when the Bluetooth radio is not powered on."""


class TargetNotFound(TransferError):
    """Raised when a named send target does not show up during a scan."""


class NoWritableCharacteristic(TransferError):
    """Raised when a BLE device exposes nothing we can write to."""


class NoTarget(TransferError):
    """Raised when a send has neither an explicit target nor connected devices."""


class PayloadTooLarge(TransferError):
    """Raised when a payload exceeds what the transport can carry in one go."""


class DeviceNotFound(TransferError):
    """Raised when a device id is not among the known devices."""
