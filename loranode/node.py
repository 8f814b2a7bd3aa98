"""A LoRa network node: packet dispatch, acknowledgements and neighbour table."""

from __future__ import annotations

import enum
import sys
import time
from dataclasses import dataclass
from typing import Callable, TextIO

from . import slip
from .command import MAX_DATA, ModemCommand
from .ipv4 import BROADCAST, Packet, PacketError, build_packet, parse_packet

ACK_TIMEOUT = 3.0
MAX_RETRIES = 1

__all__ = [
    "ACK_TIMEOUT",
    "MAX_RETRIES",
    "Protocol",
    "PendingAck",
    "NodeUnavailableError",
    "EmptyMessageError",
    "Node",
]


class Protocol(enum.IntEnum):
    """Values of the protocol field of a packet."""

    MODEM = 0
    ACK = 1
    UNICAST = 2
    BROADCAST = 3
    HELLO = 4
    TEST = 5
    LED = 6
    OLED = 7


@dataclass
class PendingAck:
    """A sent message still waiting for its acknowledgement."""

    destination: int
    message_id: int
    attempts: int
    sent_at: float


class NodeUnavailableError(LookupError):
    """Raised when a destination has not announced itself with Hello."""


class EmptyMessageError(ValueError):
    """Raised when a message to send is empty."""


def _as_bytes(message: str | bytes) -> bytes:
    return message.encode("utf-8") if isinstance(message, str) else bytes(message)


def _as_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class Node:
    """A node with a 16-bit address talking to its modem over a serial link."""

    def __init__(
        self,
        address: int,
        link,
        clock: Callable[[], float] = time.time,
        out: TextIO | None = None,
    ) -> None:
        self.address = address & 0xFFFF
        self.link = link
        self.clock = clock
        self.out = out
        self.pending_acks: dict[int, PendingAck] = {}
        self._hello_table: dict[int, float] = {}
        self._counter = 1

    def _say(self, text: str) -> None:
        print(text, file=self.out if self.out is not None else sys.stdout)

    @staticmethod
    def _warn(text: str) -> None:
        print(text, file=sys.stderr)

    def next_id(self) -> int:
        """Return a fresh 16-bit message identifier."""
        identifier = self._counter
        self._counter = (self._counter + 1) & 0xFFFF
        return identifier

    def _packet(
        self, protocol: Protocol, destination: int, data: bytes = b"", total_length: int | None = None
    ) -> Packet:
        return Packet(
            total_length=(len(data) if total_length is None else total_length) & 0xFF,
            identifier=self.next_id(),
            protocol=int(protocol),
            source=self.address,
            destination=destination & 0xFFFF,
            data=data,
        ).with_checksum()

    # Incoming traffic

    def poll(self) -> Packet | None:
        """Read waiting bytes from the link and handle the packet they carry.

        Returns the packet if it was addressed to this node, else None.
        """
        received = self.link.receive()
        if not received:
            return None
        try:
            payload = slip.decode(received)
        except slip.SlipError:
            self._warn("[!] Error al decodificar SLIP")
            return None
        try:
            packet = parse_packet(payload)
        except PacketError:
            self._warn("[!] Error al parsear IPv4")
            return None
        if not self.handle_packet(packet):
            return None
        self.check_pending_acks()
        return packet

    def handle_packet(self, packet: Packet) -> bool:
        """Dispatch *packet*; return False if it is not for this node."""
        if packet.destination not in (self.address, BROADCAST):
            return False
        handlers = {
            Protocol.ACK: self._on_ack,
            Protocol.UNICAST: self._on_unicast,
            Protocol.BROADCAST: self._on_broadcast,
            Protocol.HELLO: self._on_hello,
            Protocol.TEST: self._on_test,
            Protocol.LED: self._on_led,
            Protocol.OLED: self._on_oled,
        }
        handler = handlers.get(packet.protocol)
        if handler is None:
            self._say(f"[!] Protocolo desconocido: {packet.protocol}")
        else:
            handler(packet)
        return True

    def _on_ack(self, packet: Packet) -> None:
        if len(packet.data) < 2:
            return
        confirmed = (packet.data[0] << 8) | packet.data[1]
        self._say(
            f"[+] ACK recibido de nodo 0x{packet.source:x} "
            f"para mensaje ID: {confirmed:x}"
        )
        self.pending_acks.pop(confirmed, None)

    def _on_unicast(self, packet: Packet) -> None:
        self._say(
            f"[+] Mensaje unicast de nodo 0x{packet.source:x}: {_as_text(packet.data)}"
        )
        self.send_ack(packet.source, packet.identifier)

    def _on_broadcast(self, packet: Packet) -> None:
        self._say(
            f"[+] Mensaje broadcast de nodo 0x{packet.source:x}: {_as_text(packet.data)}"
        )

    def _on_hello(self, packet: Packet) -> None:
        self._hello_table[packet.source] = self.clock()

    def _on_test(self, packet: Packet) -> None:
        self._say(f"[+] Comando de prueba recibido de nodo 0x{packet.source:x}")
        self.send_modem_command(ModemCommand(cmd=Protocol.TEST).with_fcs())
        self.send_ack(packet.source, packet.identifier)

    def _on_led(self, packet: Packet) -> None:
        self._say(f"[+] Comando LED recibido de nodo 0x{packet.source:x}")
        self.send_modem_command(ModemCommand(cmd=Protocol.LED).with_fcs())
        self.send_ack(packet.source, packet.identifier)

    def _on_oled(self, packet: Packet) -> None:
        self._say(
            f"[+] Comando OLED recibido de nodo 0x{packet.source:x}: {_as_text(packet.data)}"
        )
        command = ModemCommand(cmd=Protocol.OLED, data=packet.data[:MAX_DATA]).with_fcs()
        self.send_modem_command(command)
        self.send_ack(packet.source, packet.identifier)

    # Outgoing traffic

    def send_packet(self, packet: Packet) -> None:
        """Serialise *packet*, frame it with SLIP and write it to the link."""
        self.link.send(slip.encode(build_packet(packet)))

    def send_ack(self, destination: int, message_id: int) -> Packet:
        """Acknowledge *message_id* to *destination*."""
        data = bytes(((message_id >> 8) & 0xFF, message_id & 0xFF))
        packet = self._packet(Protocol.ACK, destination, data)
        self.send_packet(packet)
        return packet

    def send_modem_command(self, command: ModemCommand) -> Packet:
        """Send *command* to this node's own modem."""
        data = bytes((command.cmd & 0xFF, command.length & 0xFF)) + command.data
        packet = self._packet(
            Protocol.MODEM, self.address, data, total_length=2 + command.length
        )
        self.send_packet(packet)
        return packet

    def check_pending_acks(self) -> list[int]:
        """Retry or drop overdue acknowledgements; return the dropped IDs."""
        now = self.clock()
        dropped = []
        for message_id, ack in self.pending_acks.items():
            if now - ack.sent_at < ACK_TIMEOUT:
                continue
            if ack.attempts < MAX_RETRIES:
                self._say(
                    f"[!] Reintentando envío de ID {ack.message_id} "
                    f"a nodo 0x{ack.destination:x}"
                )
                ack.attempts += 1
                ack.sent_at = now
            else:
                self._say(
                    f"[!] No se recibió ACK para ID {ack.message_id} "
                    "después de 2 intentos. Descartando."
                )
                dropped.append(message_id)
        for message_id in dropped:
            del self.pending_acks[message_id]
        return dropped

    def known_nodes(self) -> dict[int, float]:
        """Addresses heard through Hello, with the time each was last heard."""
        return dict(sorted(self._hello_table.items()))

    def format_nodes(self) -> str:
        """A table of known nodes and the seconds since each was heard."""
        lines = ["", "=============== NODOS DISPONIBLES ==============="]
        nodes = self.known_nodes()
        if not nodes:
            lines.append("No se han recibido mensajes Hello de ningún nodo.")
            return "\n".join(lines)
        now = self.clock()
        lines.append("IP Nodo\t\tTiempo transcurrido")
        lines.append("-------\t\t-------------------")
        for address, heard in nodes.items():
            lines.append(f"0x{address:x}\t\t{int(now - heard)} segundos")
        lines.append("=================================================")
        return "\n".join(lines)

    def send_hello(self) -> Packet:
        """Announce this node to everyone."""
        self._say("[+] Enviando mensaje Hello...")
        packet = self._packet(Protocol.HELLO, BROADCAST, b"hola")
        self.send_packet(packet)
        self._say("[✓] Hello enviado correctamente.")
        return packet

    def _expect_ack(self, packet: Packet) -> None:
        self.pending_acks[packet.identifier] = PendingAck(
            destination=packet.destination,
            message_id=packet.identifier,
            attempts=0,
            sent_at=self.clock(),
        )

    def _require_node(self, destination: int, allow_self: bool) -> None:
        if destination in self._hello_table:
            return
        if allow_self and destination == self.address:
            return
        hint = "" if allow_self else " Envíe un Hello primero."
        raise NodeUnavailableError(f"Nodo 0x{destination:x} no está disponible.{hint}")

    @staticmethod
    def _require_text(message: str | bytes) -> bytes:
        data = _as_bytes(message)
        if not data:
            raise EmptyMessageError("El mensaje no puede estar vacío.")
        return data

    def send_unicast(self, destination: int, message: str | bytes) -> Packet:
        """Send *message* to a known node and wait for its ACK in the background."""
        destination &= 0xFFFF
        self._require_node(destination, allow_self=False)
        data = self._require_text(message)
        packet = self._packet(Protocol.UNICAST, destination, data)
        self._expect_ack(packet)
        self.send_packet(packet)
        self._say(f"[✓] Mensaje enviado a nodo 0x{destination:x}")
        self._say("[...] Esperando ACK en segundo plano...")
        return packet

    def send_broadcast(self, message: str | bytes) -> Packet:
        """Send *message* to every node."""
        data = self._require_text(message)
        packet = self._packet(Protocol.BROADCAST, BROADCAST, data)
        self.send_packet(packet)
        self._say("[✓] Mensaje broadcast enviado.")
        return packet

    def _send_empty_command(self, protocol: Protocol, destination: int) -> Packet:
        destination &= 0xFFFF
        self._require_node(destination, allow_self=True)
        packet = self._packet(protocol, destination, b"", total_length=0)
        self._expect_ack(packet)
        self.send_packet(packet)
        return packet

    def send_test_command(self, destination: int) -> Packet:
        """Ask *destination* to show its test image."""
        packet = self._send_empty_command(Protocol.TEST, destination)
        self._say("[✓] Comando de prueba enviado. Esperando ACK en segundo plano...")
        return packet

    def send_led_command(self, destination: int) -> Packet:
        """Ask *destination* to toggle its LED."""
        packet = self._send_empty_command(Protocol.LED, destination)
        self._say("[✓] Comando LED enviado. Esperando ACK en segundo plano...")
        return packet

    def send_oled_message(self, destination: int, message: str | bytes) -> Packet:
        """Ask *destination* to show *message* on its OLED display."""
        destination &= 0xFFFF
        self._require_node(destination, allow_self=True)
        data = self._require_text(message)
        packet = self._packet(Protocol.OLED, destination, data)
        self._expect_ack(packet)
        self.send_packet(packet)
        self._say("[✓] Mensaje OLED enviado. Esperando ACK en segundo plano...")
        return packet