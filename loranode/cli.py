"""Interactive console for a LoRa node and the command that starts it."""

from __future__ import annotations

import argparse
import codecs
import os
import sys
import termios
import time
from typing import Callable, TextIO

from .node import EmptyMessageError, Node, NodeUnavailableError
from .uart import UartError, UartLink

DEFAULT_ADDRESS = 0x0003
DEFAULT_DEVICE = "/dev/ttyUSB0"
DEFAULT_BAUDRATE = 115200
POLL_INTERVAL = 0.05

__all__ = [
    "DEFAULT_ADDRESS",
    "DEFAULT_DEVICE",
    "NonBlockingInput",
    "Console",
    "parse_address",
    "parse_option",
    "main",
]

_HEX_DIGITS = "0123456789abcdefABCDEF"


def parse_address(text: str) -> int:
    """Read a 16-bit hexadecimal address; 0 if *text* holds none.

    Leading whitespace and a 0x prefix are accepted, and reading stops at
    the first character that is not a hexadecimal digit.
    """
    rest = text.lstrip()
    if rest[:2].lower() == "0x" and rest[2:3] and rest[2] in _HEX_DIGITS:
        rest = rest[2:]
    digits = []
    for char in rest:
        if char not in _HEX_DIGITS:
            break
        digits.append(char)
    if not digits:
        return 0
    return int("".join(digits), 16) & 0xFFFF


def parse_option(text: str) -> int:
    """Read a leading decimal integer from *text*; 0 if there is none."""
    rest = text.lstrip()
    sign = 1
    if rest[:1] in ("+", "-"):
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    digits = []
    for char in rest:
        if not char.isdigit():
            break
        digits.append(char)
    if not digits:
        return 0
    return sign * int("".join(digits))


class NonBlockingInput:
    """Reads whole lines from a file descriptor without blocking.

    On a terminal, canonical mode and echo are switched off while the
    context is active.
    """

    def __init__(self, fd: int | None = None) -> None:
        self._fd = fd
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._saved_attrs = None
        self._was_blocking = True

    @property
    def fd(self) -> int:
        if self._fd is None:
            self._fd = sys.stdin.fileno()
        return self._fd

    def __enter__(self) -> NonBlockingInput:
        fd = self.fd
        if os.isatty(fd):
            self._saved_attrs = termios.tcgetattr(fd)
            attrs = termios.tcgetattr(fd)
            attrs[3] &= ~(termios.ICANON | termios.ECHO)
            termios.tcsetattr(fd, termios.TCSANOW, attrs)
        self._was_blocking = os.get_blocking(fd)
        os.set_blocking(fd, False)
        return self

    def __exit__(self, *args) -> None:
        fd = self.fd
        if self._saved_attrs is not None:
            termios.tcsetattr(fd, termios.TCSANOW, self._saved_attrs)
            self._saved_attrs = None
        os.set_blocking(fd, self._was_blocking)

    def _take_line(self) -> str | None:
        line, newline, rest = self._buffer.partition("\n")
        if not newline:
            return None
        self._buffer = rest
        return line

    def read_line(self) -> str | None:
        """Return the next complete line, or None if none is ready yet.

        Raises EOFError once the input is exhausted.
        """
        line = self._take_line()
        if line is not None:
            return line
        while True:
            try:
                chunk = os.read(self.fd, 1024)
            except BlockingIOError:
                return None
            if not chunk:
                self._buffer += self._decoder.decode(b"", final=True)
                if self._buffer:
                    line, self._buffer = self._buffer, ""
                    return line
                raise EOFError("input closed")
            self._buffer += self._decoder.decode(chunk)
            line = self._take_line()
            if line is not None:
                return line


class Console:
    """Menu-driven front end that keeps polling the node while waiting."""

    def __init__(
        self,
        node: Node,
        read_line: Callable[[], str | None],
        out: TextIO | None = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.node = node
        self.read_line = read_line
        self.out = out
        self.poll_interval = poll_interval

    def _write(self, text: str) -> None:
        stream = self.out if self.out is not None else sys.stdout
        stream.write(text)
        stream.flush()

    def _say(self, text: str) -> None:
        self._write(text + "\n")

    def _poll(self) -> None:
        try:
            self.node.poll()
        except UartError as exc:
            print(f"[!] {exc}", file=sys.stderr)

    def _ask(self, prompt: str) -> str:
        self._write(prompt)
        while True:
            line = self.read_line()
            if line is not None:
                return line
            self._poll()
            time.sleep(self.poll_interval)

    def _available(self, destination: int, allow_self: bool) -> bool:
        if destination in self.node.known_nodes():
            return True
        return allow_self and destination == self.node.address

    def run(self) -> None:
        """Show the main menu until the user leaves or input ends."""
        self._say("=== INICIANDO NODO LoRa ===")
        self._say(f"IP del nodo: 0x{self.node.address:x}")
        if not self.node.link.is_open():
            print("Error: No se pudo establecer comunicación UART", file=sys.stderr)
            return
        self._say("Comunicación UART establecida correctamente")
        try:
            self.main_menu()
        except EOFError:
            self._say("")
        self._say("=== NODO FINALIZADO ===")

    def main_menu(self) -> None:
        """The top-level menu."""
        option = -1
        while option != 5:
            self._poll()
            self._write(
                "\r=============== MENÚ PRINCIPAL ===============\n"
                f"IP del nodo: 0x{self.node.address:x}\n"
                "1. Ver nodos disponibles\n"
                "2. Enviar mensaje Hello\n"
                "3. Comandos internos del modem\n"
                "4. Enviar mensajes a otros nodos\n"
                "5. Salir\n"
            )
            option = parse_option(self._ask("Seleccione una opción: "))
            if option == 1:
                self._say(self.node.format_nodes())
            elif option == 2:
                self.node.send_hello()
            elif option == 3:
                self.internal_commands_menu()
            elif option == 4:
                self.messaging_menu()
            elif option == 5:
                self._say("Saliendo...")
            else:
                self._say("[!] Opción inválida")

    def internal_commands_menu(self) -> None:
        """Commands for the modem of this or another node."""
        option = -1
        while option != 4:
            self._poll()
            self._write(
                "\n========== COMANDOS INTERNOS ==========\n"
                "1. Comando de prueba\n"
                "2. Cambiar estado LED\n"
                "3. Enviar mensaje a OLED\n"
                "4. Volver al menú principal\n"
            )
            option = parse_option(self._ask("Seleccione una opción: "))
            if option == 1:
                self._command(self.node.send_test_command)
            elif option == 2:
                self._command(self.node.send_led_command)
            elif option == 3:
                self._oled_message()
            elif option == 4:
                self._say("Volviendo al menú principal...")
            else:
                self._say("[!] Opción no válida.")

    def messaging_menu(self) -> None:
        """Unicast and broadcast messages."""
        option = -1
        while option != 3:
            self._poll()
            self._write(
                "\n========== ENVÍO DE MENSAJES ==========\n"
                "1. Enviar mensaje unicast\n"
                "2. Enviar mensaje broadcast\n"
                "3. Volver al menú principal\n"
            )
            option = parse_option(self._ask("Seleccione una opción: "))
            if option == 1:
                self._unicast()
            elif option == 2:
                self._broadcast()
            elif option == 3:
                self._say("Volviendo al menú principal...")
            else:
                self._say("[!] Opción no válida.")

    def _destination(self, prompt: str, allow_self: bool) -> int | None:
        destination = parse_address(self._ask(prompt))
        if self._available(destination, allow_self):
            return destination
        hint = "" if allow_self else " Envíe un Hello primero."
        self._say(f"[!] Nodo 0x{destination:x} no está disponible.{hint}")
        return None

    def _command(self, send: Callable[[int], object]) -> None:
        destination = self._destination(
            "Ingrese IP destino (en hexadecimal): ", allow_self=True
        )
        if destination is None:
            return
        try:
            send(destination)
        except NodeUnavailableError as exc:
            self._say(f"[!] {exc}")

    def _oled_message(self) -> None:
        destination = self._destination(
            "Ingrese IP destino (en hexadecimal): ", allow_self=True
        )
        if destination is None:
            return
        message = self._ask("Ingrese mensaje para OLED: ")
        try:
            self.node.send_oled_message(destination, message)
        except (EmptyMessageError, NodeUnavailableError) as exc:
            self._say(f"[!] {exc}")

    def _unicast(self) -> None:
        destination = self._destination(
            "Ingrese IP destino (en hexadecimal, ej: 10 para 0x0010): ",
            allow_self=False,
        )
        if destination is None:
            return
        message = self._ask("Ingrese el mensaje: ")
        try:
            self.node.send_unicast(destination, message)
        except (EmptyMessageError, NodeUnavailableError) as exc:
            self._say(f"[!] {exc}")

    def _broadcast(self) -> None:
        message = self._ask("Ingrese el mensaje broadcast: ")
        try:
            self.node.send_broadcast(message)
        except EmptyMessageError as exc:
            self._say(f"[!] {exc}")


def main(argv: list[str] | None = None) -> int:
    """Start a node and its console."""
    parser = argparse.ArgumentParser(prog="loranode", description="LoRa network node")
    parser.add_argument(
        "address",
        nargs="?",
        default=None,
        help="node address in hexadecimal (default 3)",
    )
    parser.add_argument("--device", default=DEFAULT_DEVICE, help="serial device")
    parser.add_argument(
        "--baudrate", type=int, default=DEFAULT_BAUDRATE, help="serial speed"
    )
    args = parser.parse_args(argv)

    address = DEFAULT_ADDRESS if args.address is None else parse_address(args.address)
    print(f"Iniciando nodo con IP: 0x{address:x}")

    link = UartLink(args.device, args.baudrate)
    try:
        link.open()
    except UartError:
        print("Error: No se pudo abrir el puerto UART", file=sys.stderr)

    try:
        node = Node(address, link)
        keyboard = NonBlockingInput()
        console = Console(node, keyboard.read_line)
        if link.is_open():
            with keyboard:
                console.run()
        else:
            console.run()
    finally:
        link.close()
    return 0