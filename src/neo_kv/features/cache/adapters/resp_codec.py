"""RESP2 wire codec for the cache client.

Requests are arrays of bulk strings::

    SET a 1 EX 60  ->  *5\\r\\n$3\\r\\nSET\\r\\n$1\\r\\na\\r\\n$1\\r\\n1\\r\\n$2\\r\\nEX\\r\\n$2\\r\\n60\\r\\n

Replies use the first byte as type marker:

    +  simple string  -> str
    -  error          -> RemoteError (returned, not raised)
    :  integer        -> int
    $  bulk string    -> bytes, or None for ``$-1`` (absent)
    *  array          -> list, or None for ``*-1``

An empty value is ``$0\\r\\n\\r\\n`` and decodes to ``b""``, never to None.
"""

import math
from typing import Any, List, Optional, Sequence, Tuple, Union

from ..entities.operation import Operation, OperationKind
from ..entities.protocols import INCOMPLETE
from ....core.exceptions import ProtocolError, RemoteError

CRLF = b"\r\n"
MAX_BULK_LENGTH = 512 * 1024 * 1024
MAX_ARRAY_LENGTH = 1024 * 1024
MAX_LINE_LENGTH = 64 * 1024
MAX_NESTING_DEPTH = 32

SIMPLE_STRING = ord("+")
ERROR = ord("-")
INTEGER = ord(":")
BULK_STRING = ord("$")
ARRAY = ord("*")

_COMMANDS = {
    OperationKind.GET: b"GET",
    OperationKind.SET: b"SET",
    OperationKind.DELETE: b"DEL",
    OperationKind.INCREMENT: b"INCRBY",
    OperationKind.EXISTS: b"EXISTS",
    OperationKind.TTL: b"TTL",
    OperationKind.PING: b"PING",
}


def _parse_integer(line: bytes) -> int:
    body = line[1:] if line[:1] in (b"-", b"+") else line
    if not body or not body.isdigit():
        raise ProtocolError(f"Invalid integer in frame: {line!r}")
    return int(line)


def _parse(buf: bytearray, pos: int, depth: int) -> Tuple[Any, int]:
    """Parse one value starting at ``pos``.

    Returns ``(value, next_pos)`` or ``(INCOMPLETE, pos)`` when more bytes
    are needed.
    """
    if pos >= len(buf):
        return INCOMPLETE, pos

    marker = buf[pos]
    line_end = buf.find(CRLF, pos + 1)
    if line_end == -1:
        if len(buf) - pos > MAX_LINE_LENGTH:
            raise ProtocolError("Frame header exceeds maximum line length")
        return INCOMPLETE, pos

    line = bytes(buf[pos + 1:line_end])
    if b"\r" in line or b"\n" in line:
        raise ProtocolError(f"Stray line terminator in frame header: {line!r}")
    following = line_end + 2

    if marker == SIMPLE_STRING:
        try:
            return line.decode("utf-8"), following
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Simple string is not valid UTF-8: {e}")

    if marker == ERROR:
        return RemoteError(line.decode("utf-8", errors="replace")), following

    if marker == INTEGER:
        return _parse_integer(line), following

    if marker == BULK_STRING:
        length = _parse_integer(line)
        if length == -1:
            return None, following
        if length < -1 or length > MAX_BULK_LENGTH:
            raise ProtocolError(f"Invalid bulk string length: {length}")
        end = following + length
        if len(buf) < end + 2:
            return INCOMPLETE, pos
        if buf[end:end + 2] != CRLF:
            raise ProtocolError("Bulk string is not terminated by CRLF")
        return bytes(buf[following:end]), end + 2

    if marker == ARRAY:
        length = _parse_integer(line)
        if length == -1:
            return None, following
        if length < -1 or length > MAX_ARRAY_LENGTH:
            raise ProtocolError(f"Invalid array length: {length}")
        if depth >= MAX_NESTING_DEPTH:
            raise ProtocolError("Array nesting too deep")
        items = []
        cursor = following
        for _ in range(length):
            item, cursor_after = _parse(buf, cursor, depth + 1)
            if item is INCOMPLETE:
                return INCOMPLETE, pos
            items.append(item)
            cursor = cursor_after
        return items, cursor

    raise ProtocolError(f"Unknown frame type marker: {bytes([marker])!r}")


class RespDecoder:
    """Incremental decoder that buffers partial frames across reads."""

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, data: bytes) -> None:
        self._buffer.extend(data)

    def next_reply(self) -> Any:
        """Return the next complete value, or ``INCOMPLETE``."""
        value, consumed = _parse(self._buffer, 0, 0)
        if value is INCOMPLETE:
            return INCOMPLETE
        del self._buffer[:consumed]
        return value

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of their frame."""
        return len(self._buffer)


class RespCodec:
    """Encodes operations into request frames and decodes reply frames."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def new_decoder(self) -> RespDecoder:
        return RespDecoder()

    # Encoding

    def to_bytes(self, value: Any) -> bytes:
        """Render a key, value or argument as bulk string payload."""
        if isinstance(value, bytes):
            return value
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, bool) or value is None:
            raise ProtocolError(f"Cannot encode {value!r}; use str, bytes, int or float")
        if isinstance(value, int):
            return b"%d" % value
        if isinstance(value, float):
            if math.isnan(value):
                raise ProtocolError("Cannot encode NaN")
            return repr(value).encode("ascii")
        if isinstance(value, str):
            try:
                return value.encode(self.encoding)
            except UnicodeEncodeError as e:
                raise ProtocolError(f"Cannot encode text with {self.encoding}: {e}")
        raise ProtocolError(f"Cannot encode value of type {type(value).__name__}")

    def encode_command(self, *parts: Any) -> bytes:
        """Encode arbitrary command parts as an array of bulk strings."""
        if not parts:
            raise ProtocolError("Cannot encode an empty command")
        out = bytearray(b"*%d\r\n" % len(parts))
        for part in parts:
            payload = self.to_bytes(part)
            out += b"$%d\r\n" % len(payload)
            out += payload
            out += CRLF
        return bytes(out)

    @staticmethod
    def _ttl_parts(ttl: Union[int, float]) -> Tuple[bytes, int]:
        """Seconds when whole, else milliseconds."""
        if isinstance(ttl, int) or float(ttl).is_integer():
            return b"EX", int(ttl)
        return b"PX", max(1, round(ttl * 1000))

    def command_parts(self, operation: Operation) -> List[Any]:
        kind = operation.kind
        if kind is OperationKind.PING:
            return [b"PING"]
        if kind is OperationKind.SET:
            parts = [b"SET", operation.key, operation.value]
            if operation.ttl is not None:
                unit, amount = self._ttl_parts(operation.ttl)
                parts += [unit, amount]
            if operation.nx:
                parts.append(b"NX")
            if operation.xx:
                parts.append(b"XX")
            return parts
        if kind is OperationKind.EXPIRE:
            unit, amount = self._ttl_parts(operation.ttl)
            return [b"EXPIRE" if unit == b"EX" else b"PEXPIRE", operation.key, amount]
        if kind is OperationKind.INCREMENT:
            return [b"INCRBY", operation.key, operation.amount]
        return [_COMMANDS[kind], operation.key]

    def encode(self, operation: Operation) -> bytes:
        """Encode an operation into one deterministic request frame."""
        return self.encode_command(*self.command_parts(operation))

    def encode_reply(self, value: Any) -> bytes:
        """Encode a reply frame, as the cache endpoint would send it."""
        if isinstance(value, RemoteError):
            message = value.message.replace("\r", " ").replace("\n", " ")
            return b"-" + message.encode("utf-8") + CRLF
        if value is None:
            return b"$-1\r\n"
        if isinstance(value, bool):
            raise ProtocolError("Cannot encode a boolean reply")
        if isinstance(value, int):
            return b":%d\r\n" % value
        if isinstance(value, str):
            if "\r" in value or "\n" in value:
                raise ProtocolError("Simple string replies cannot contain CR or LF")
            return b"+" + value.encode("utf-8") + CRLF
        if isinstance(value, (bytes, bytearray, memoryview)):
            payload = bytes(value)
            return b"$%d\r\n" % len(payload) + payload + CRLF
        if isinstance(value, (list, tuple)):
            out = bytearray(b"*%d\r\n" % len(value))
            for item in value:
                out += self.encode_reply(item)
            return bytes(out)
        raise ProtocolError(f"Cannot encode reply of type {type(value).__name__}")

    # Decoding

    def decode(self, data: bytes) -> Any:
        """Decode exactly one complete frame."""
        decoder = RespDecoder()
        decoder.feed(data)
        value = decoder.next_reply()
        if value is INCOMPLETE:
            raise ProtocolError("Incomplete frame")
        if decoder.buffered:
            raise ProtocolError(f"{decoder.buffered} trailing bytes after frame")
        return value

    def _text(self, raw: bytes) -> Union[str, bytes]:
        try:
            return raw.decode(self.encoding)
        except UnicodeDecodeError:
            return raw

    def decode_operation(self, frame: Union[bytes, Sequence[bytes]]) -> Operation:
        """Rebuild an operation from a request frame (or its decoded parts).

        Keys and values come back as text when they decode cleanly, bytes
        otherwise; an operation built from text therefore round-trips
        exactly.
        """
        parts = self.decode(frame) if isinstance(frame, (bytes, bytearray)) else frame
        if not isinstance(parts, list) or not parts:
            raise ProtocolError("Request frame must be a non-empty array")
        if not all(isinstance(part, bytes) for part in parts):
            raise ProtocolError("Request frame must contain only bulk strings")

        name = parts[0].upper()
        args = parts[1:]
        try:
            if name == b"PING" and not args:
                return Operation.ping()
            if name in (b"GET", b"DEL", b"EXISTS", b"TTL") and len(args) == 1:
                kind = {
                    b"GET": OperationKind.GET,
                    b"DEL": OperationKind.DELETE,
                    b"EXISTS": OperationKind.EXISTS,
                    b"TTL": OperationKind.TTL,
                }[name]
                return Operation(kind, self._text(args[0]))
            if name == b"INCRBY" and len(args) == 2:
                return Operation.increment(self._text(args[0]), _parse_integer(args[1]))
            if name in (b"EXPIRE", b"PEXPIRE") and len(args) == 2:
                amount = _parse_integer(args[1])
                ttl = amount if name == b"EXPIRE" else amount / 1000
                return Operation.expire(self._text(args[0]), ttl)
            if name == b"SET" and len(args) >= 2:
                return self._decode_set(args)
        except ValueError as e:
            raise ProtocolError(f"Invalid {name.decode(errors='replace')} request: {e}")
        raise ProtocolError(f"Unsupported command: {parts[0]!r} with {len(args)} arguments")

    def _decode_set(self, args: List[bytes]) -> Operation:
        key, value = self._text(args[0]), self._text(args[1])
        ttl: Optional[Union[int, float]] = None
        nx = xx = False
        options = iter(args[2:])
        for option in options:
            flag = option.upper()
            if flag in (b"EX", b"PX"):
                amount = next(options, None)
                if amount is None:
                    raise ValueError(f"{flag.decode()} requires an argument")
                amount = _parse_integer(amount)
                ttl = amount if flag == b"EX" else amount / 1000
            elif flag == b"NX":
                nx = True
            elif flag == b"XX":
                xx = True
            else:
                raise ValueError(f"unsupported option {option!r}")
        return Operation.set(key, value, ttl=ttl, nx=nx, xx=xx)
