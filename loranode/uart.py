"""Serial link to the LoRa modem."""

from __future__ import annotations

import serial

READ_CHUNK = 256

__all__ = ["READ_CHUNK", "UartError", "UartLink"]


class UartError(OSError):
    """Raised when the serial link cannot be opened, written or read."""


class UartLink:
    """A non-blocking 8N1 serial link without flow control."""

    def __init__(self, device: str, baudrate: int = 115200) -> None:
        self.device = device
        self.baudrate = baudrate
        self._port: serial.SerialBase | None = None

    def open(self) -> None:
        """Open the device; raise UartError if it cannot be opened."""
        if self._port is not None:
            return
        try:
            self._port = serial.serial_for_url(
                self.device,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=0,
                xonxoff=False,
                rtscts=False,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise UartError(f"cannot open port {self.device}: {exc}") from exc

    def close(self) -> None:
        """Close the device if it is open."""
        if self._port is not None:
            self._port.close()
            self._port = None

    def is_open(self) -> bool:
        """Whether the link is open."""
        return self._port is not None

    def send(self, message: bytes) -> int:
        """Write *message* and return the number of bytes written."""
        if self._port is None:
            raise UartError("port is not open")
        try:
            written = self._port.write(bytes(message))
        except (serial.SerialException, OSError) as exc:
            raise UartError(f"write to {self.device} failed: {exc}") from exc
        return len(message) if written is None else written

    def receive(self) -> bytes:
        """Return up to 256 bytes already waiting; empty if none or closed."""
        if self._port is None:
            return b""
        try:
            return bytes(self._port.read(READ_CHUNK))
        except (serial.SerialException, OSError) as exc:
            raise UartError(f"read from {self.device} failed: {exc}") from exc

    def __enter__(self) -> UartLink:
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()