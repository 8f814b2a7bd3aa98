# loranode

An interactive node for a small LoRa network. The node talks to a LoRa modem
over a serial line (`/dev/ttyUSB0` at 115200 baud by default). Every packet is
a compact IPv4-style header with 16-bit node addresses, framed with SLIP.

From the console menu you can:

- list the nodes heard from through Hello messages, with the seconds since each was last heard
- send a Hello broadcast (`hola`) so other nodes learn about this one
- send commands to a node's modem: test image, LED toggle, text on the OLED
- send unicast messages, which expect an ACK, or broadcast messages

Incoming traffic is read while the menu waits for input. Unicast messages and
modem commands addressed to this node are answered with an ACK; test, LED and
OLED commands are also passed on to this node's own modem as a command frame.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Usage

```
loranode [ADDRESS] [--device DEVICE] [--baudrate BAUDRATE]
```

- `ADDRESS` is the node's address in hexadecimal, for example `10` for
  `0x0010` (a `0x` prefix is accepted). When it is left out, the node uses `0x3`.
  The address `0xFFFF` is the broadcast address.
- `--device` is the serial device, `/dev/ttyUSB0` by default. Any URL that
  pyserial's `serial_for_url` accepts works too.
- `--baudrate` is the serial speed, 115200 by default.

If the serial port cannot be opened, an error is printed and the console does
not start. The console ends when option 5 is chosen or the input is closed.

## Library use

The wire formats work on their own without a serial port:

```python
from loranode import slip
from loranode.ipv4 import Packet, build_packet, parse_packet

packet = Packet(
    total_length=4, identifier=1, protocol=4,
    source=0x0003, destination=0xFFFF, data=b"hola",
).with_checksum()

frame = slip.encode(build_packet(packet))
assert parse_packet(slip.decode(frame)) == packet
```

- `loranode.slip`: `encode`, `decode`; malformed frames raise `SlipError`.
- `loranode.ipv4`: `Packet`, `build_packet`, `parse_packet` (raises
  `PacketError` on fewer than 11 bytes) and `compute_checksum`.
- `loranode.command`: the modem's command frames, `ModemCommand`,
  `build_command`, `parse_command` (raises `CommandError`) and `compute_fcs`.
  A command carries at most 63 payload bytes.
- `loranode.uart.UartLink`: a non-blocking 8N1 serial link with `open`,
  `close`, `is_open`, `send` and `receive`; it is also a context manager.
  Failures raise `UartError`.
- `loranode.node.Node`: the protocol logic on any link object that offers
  `send` and `receive`. `poll` reads and dispatches incoming packets;
  `send_hello`, `send_unicast`, `send_broadcast`, `send_test_command`,
  `send_led_command` and `send_oled_message` send traffic. Sending to a node
  not heard through Hello raises `NodeUnavailableError` (test, LED and OLED
  commands may also go to the node's own address); empty messages raise
  `EmptyMessageError`. `known_nodes` and `format_nodes` report the neighbour
  table. A clock function and an output stream can be passed in.
- `loranode.cli`: `Console`, `NonBlockingInput`, `parse_address`,
  `parse_option` and `main`.

## What it does not do

- It contains no software for the modem itself; it only speaks to a modem
  that already handles the radio side over the serial line.
- Acknowledgements are tracked but messages are not sent again: when no ACK
  arrives within three seconds the node reports a retry, and after another
  three seconds it drops the message ID. Pending ACKs are only checked when a
  packet addressed to this node arrives.
- Nothing is stored between runs; the neighbour table lives in memory.