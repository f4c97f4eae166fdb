"""Serial framing, CRCs, bootloader DFU, OTA and BLE bridge logic for a UART-attached host controller."""

__version__ = "0.1.0"