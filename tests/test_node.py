import io

import pytest

from loranode import slip
from loranode.command import ModemCommand, compute_fcs
from loranode.ipv4 import BROADCAST, Packet, build_packet, compute_checksum, parse_packet
from loranode.node import (
    EmptyMessageError,
    Node,
    NodeUnavailableError,
    PendingAck,
    Protocol,
)

OWN = 0x0003
PEER = 0x0010


class FakeLink:
    def __init__(self):
        self.sent = []
        self.incoming = []

    def send(self, message):
        self.sent.append(bytes(message))
        return len(message)

    def receive(self):
        return self.incoming.pop(0) if self.incoming else b""


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def sent_packets(link):
    return [parse_packet(slip.decode(frame)) for frame in link.sent]


def frame(packet):
    return slip.encode(build_packet(packet.with_checksum()))


@pytest.fixture
def env():
    link = FakeLink()
    clock = FakeClock()
    out = io.StringIO()
    node = Node(OWN, link, clock, out)
    return node, link, clock, out


def deliver(node, link, packet):
    link.incoming.append(frame(packet))
    return node.poll()


def hello_from(node, link, address):
    deliver(node, link, Packet(protocol=Protocol.HELLO, source=address,
                               destination=BROADCAST, data=b"hola"))


def test_next_id_counts_up_from_one(env):
    node, *_ = env
    assert [node.next_id() for _ in range(3)] == [1, 2, 3]


def test_send_hello_is_broadcast_with_fixed_payload(env):
    node, link, _, out = env
    node.send_hello()
    (packet,) = sent_packets(link)
    assert packet.protocol == Protocol.HELLO
    assert packet.destination == BROADCAST
    assert packet.source == OWN
    assert packet.data == b"hola"
    assert packet.total_length == len(b"hola")
    assert packet.checksum == compute_checksum(packet)
    assert "Hello enviado" in out.getvalue()


def test_poll_without_data_returns_none(env):
    node, link, *_ = env
    assert node.poll() is None
    assert link.sent == []


def test_hello_registers_node(env):
    node, link, clock, _ = env
    hello_from(node, link, PEER)
    assert node.known_nodes() == {PEER: clock.now}


def test_format_nodes_empty_and_filled(env):
    node, link, clock, _ = env
    assert "No se han recibido mensajes Hello" in node.format_nodes()
    hello_from(node, link, PEER)
    clock.now += 5
    text = node.format_nodes()
    assert "0x10\t\t5 segundos" in text


def test_packet_for_other_node_is_ignored(env):
    node, link, *_ = env
    result = deliver(node, link, Packet(protocol=Protocol.UNICAST, source=PEER,
                                        destination=0x0042, data=b"x"))
    assert result is None
    assert link.sent == []


def test_invalid_slip_is_dropped(env):
    node, link, *_ = env
    link.incoming.append(bytes((slip.END, 1, slip.ESC, 0x00, slip.END)))
    assert node.poll() is None


def test_short_packet_is_dropped(env):
    node, link, *_ = env
    link.incoming.append(slip.encode(b"\x01\x02\x03"))
    assert node.poll() is None


def test_unicast_received_is_acknowledged(env):
    node, link, _, out = env
    incoming = Packet(identifier=0x1234, protocol=Protocol.UNICAST, source=PEER,
                      destination=OWN, data=b"hi there")
    assert deliver(node, link, incoming).data == b"hi there"
    (ack,) = sent_packets(link)
    assert ack.protocol == Protocol.ACK
    assert ack.destination == PEER
    assert ack.data == bytes((0x12, 0x34))
    assert ack.total_length == 2
    assert "hi there" in out.getvalue()


def test_broadcast_received_is_not_acknowledged(env):
    node, link, _, out = env
    deliver(node, link, Packet(protocol=Protocol.BROADCAST, source=PEER,
                               destination=BROADCAST, data=b"all"))
    assert link.sent == []
    assert "all" in out.getvalue()


def test_unknown_protocol_is_reported(env):
    node, link, _, out = env
    deliver(node, link, Packet(protocol=9, source=PEER, destination=OWN))
    assert "Protocolo desconocido: 9" in out.getvalue()


def test_test_command_received_goes_to_modem_and_acks(env):
    node, link, *_ = env
    deliver(node, link, Packet(identifier=7, protocol=Protocol.TEST, source=PEER,
                               destination=OWN))
    modem, ack = sent_packets(link)
    assert modem.protocol == Protocol.MODEM
    assert modem.destination == OWN
    assert modem.data == bytes((Protocol.TEST, 0))
    assert modem.total_length == 2
    assert ack.protocol == Protocol.ACK
    assert ack.data == bytes((0, 7))


def test_led_command_received_goes_to_modem(env):
    node, link, *_ = env
    deliver(node, link, Packet(protocol=Protocol.LED, source=PEER, destination=OWN))
    modem, ack = sent_packets(link)
    assert modem.data == bytes((Protocol.LED, 0))
    assert ack.destination == PEER


def test_oled_command_carries_text_to_modem(env):
    node, link, *_ = env
    deliver(node, link, Packet(protocol=Protocol.OLED, source=PEER,
                               destination=OWN, data=b"screen"))
    modem, _ = sent_packets(link)
    assert modem.data == bytes((Protocol.OLED, len(b"screen"))) + b"screen"
    assert modem.total_length == 2 + len(b"screen")


def test_oled_command_payload_truncated_to_63(env):
    node, link, *_ = env
    deliver(node, link, Packet(protocol=Protocol.OLED, source=PEER,
                               destination=OWN, data=b"a" * 80))
    modem, _ = sent_packets(link)
    assert modem.data[1] == 63
    assert modem.data[2:] == b"a" * 63


def test_send_modem_command_layout(env):
    node, link, *_ = env
    command = ModemCommand(cmd=Protocol.OLED, data=b"ok").with_fcs()
    assert command.fcs == compute_fcs(command)
    packet = node.send_modem_command(command)
    assert sent_packets(link) == [packet]
    assert packet.data == bytes((Protocol.OLED, 2)) + b"ok"


def test_send_unicast_requires_hello(env):
    node, link, *_ = env
    with pytest.raises(NodeUnavailableError):
        node.send_unicast(PEER, "hello")
    assert link.sent == []


def test_send_unicast_to_self_still_requires_hello(env):
    node, *_ = env
    with pytest.raises(NodeUnavailableError):
        node.send_unicast(OWN, "hello")


def test_send_unicast_rejects_empty_message(env):
    node, link, *_ = env
    hello_from(node, link, PEER)
    with pytest.raises(EmptyMessageError):
        node.send_unicast(PEER, "")


def test_send_unicast_registers_pending_ack_and_ack_clears_it(env):
    node, link, clock, _ = env
    hello_from(node, link, PEER)
    packet = node.send_unicast(PEER, "hello")
    assert sent_packets(link) == [packet]
    assert packet.protocol == Protocol.UNICAST
    assert packet.data == b"hello"
    assert node.pending_acks == {
        packet.identifier: PendingAck(PEER, packet.identifier, 0, clock.now)
    }
    ident = packet.identifier
    deliver(node, link, Packet(protocol=Protocol.ACK, source=PEER, destination=OWN,
                               data=bytes((ident >> 8, ident & 0xFF))))
    assert node.pending_acks == {}


def test_send_broadcast(env):
    node, link, *_ = env
    packet = node.send_broadcast("to all")
    assert packet.destination == BROADCAST
    assert packet.protocol == Protocol.BROADCAST
    assert sent_packets(link) == [packet]
    assert node.pending_acks == {}
    with pytest.raises(EmptyMessageError):
        node.send_broadcast(b"")


def test_test_and_led_commands_allow_self(env):
    node, link, *_ = env
    test = node.send_test_command(OWN)
    led = node.send_led_command(OWN)
    assert [p.protocol for p in sent_packets(link)] == [Protocol.TEST, Protocol.LED]
    assert test.data == b"" and led.total_length == 0
    assert set(node.pending_acks) == {test.identifier, led.identifier}


def test_commands_to_unknown_node_fail(env):
    node, *_ = env
    with pytest.raises(NodeUnavailableError):
        node.send_test_command(PEER)
    with pytest.raises(NodeUnavailableError):
        node.send_led_command(PEER)
    with pytest.raises(NodeUnavailableError):
        node.send_oled_message(PEER, "x")


def test_send_oled_message(env):
    node, link, *_ = env
    hello_from(node, link, PEER)
    packet = node.send_oled_message(PEER, "display")
    assert packet.protocol == Protocol.OLED
    assert packet.data == b"display"
    assert packet.identifier in node.pending_acks
    with pytest.raises(EmptyMessageError):
        node.send_oled_message(PEER, "")


def test_pending_ack_retried_once_then_dropped(env):
    node, _, clock, out = env
    packet = node.send_test_command(OWN)
    ident = packet.identifier
    assert node.check_pending_acks() == []
    clock.now += 3
    assert node.check_pending_acks() == []
    assert node.pending_acks[ident].attempts == 1
    assert node.pending_acks[ident].sent_at == clock.now
    assert "Reintentando" in out.getvalue()
    clock.now += 2
    assert node.check_pending_acks() == []
    clock.now += 1
    assert node.check_pending_acks() == [ident]
    assert node.pending_acks == {}
    assert "Descartando" in out.getvalue()


def test_identifiers_are_unique_across_sends(env):
    node, link, *_ = env
    node.send_hello()
    node.send_broadcast("a")
    node.send_test_command(OWN)
    ids = [p.identifier for p in sent_packets(link)]
    assert len(set(ids)) == len(ids)