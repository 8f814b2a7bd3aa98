"""SLIP framing (RFC 1055 style) for the serial link to the modem."""

END = 0xC0
ESC = 0xDB
ESC_END = 0xDC
ESC_ESC = 0xDD

__all__ = ["END", "ESC", "ESC_END", "ESC_ESC", "SlipError", "encode", "decode"]


class SlipError(ValueError):
    """Raised when a byte stream is not a valid SLIP frame."""


def encode(data: bytes) -> bytes:
    """Wrap *data* in a SLIP frame, escaping END and ESC bytes."""
    out = bytearray([END])
    for byte in data:
        if byte == END:
            out += bytes((ESC, ESC_END))
        elif byte == ESC:
            out += bytes((ESC, ESC_ESC))
        else:
            out.append(byte)
    out.append(END)
    return bytes(out)


def decode(data: bytes) -> bytes:
    """Return the payload of the first non-empty SLIP frame in *data*.

    Bytes before the first END marker are ignored. A frame that is not
    closed by a trailing END is still returned if it holds any bytes.
    """
    out = bytearray()
    inside = False
    stream = iter(data)
    for byte in stream:
        if byte == END:
            if inside and out:
                return bytes(out)
            inside = True
            continue
        if not inside:
            continue
        if byte == ESC:
            following = next(stream, None)
            if following is None:
                raise SlipError("escape byte at end of input")
            if following == ESC_END:
                out.append(END)
            elif following == ESC_ESC:
                out.append(ESC)
            else:
                raise SlipError(f"invalid escape sequence 0x{following:02x}")
        else:
            out.append(byte)
    if not out:
        raise SlipError("no SLIP frame found")
    return bytes(out)