"""LoRa network node: SLIP framing, compact IPv4-style packets, modem command frames, a serial link and an interactive console."""

__version__ = "0.1.0"
__all__ = ["cli", "command", "ipv4", "node", "slip", "uart"]