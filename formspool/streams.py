from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import MultipartParseError, StreamError, UnexpectedEndOfStream

if TYPE_CHECKING:  # pragma: no cover
    from typing import Protocol

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...

    class SupportsWrite(Protocol):
        def write(self, __data: bytes) -> int | None: ...


# Get logger for this module.
logger = logging.getLogger(__name__)

# Size of the reads we issue against the wrapped stream.
DEFAULT_CHUNK_SIZE = 64 * 1024

# Longest header line, or boundary padding, we are willing to buffer.
DEFAULT_MAX_LINE_LENGTH = 16 * 1024

CR = b'\r'[0]
LF = b'\n'[0]


class PushbackReader:
    """
    Reads single bytes from a blocking stream, and allows up to ``size``
    already-read bytes to be pushed back and read again.  Reads against the
    wrapped stream are issued in chunks of ``chunk_size`` bytes.
    """
    def __init__(self, stream: SupportsRead, size: int = 1, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if size < 1:
            raise ValueError("size must be a positive number, not %r" % size)
        if chunk_size < 1:
            raise ValueError("chunk_size must be a positive number, not %r" % chunk_size)

        self._stream = stream
        self._size = size
        self._chunk_size = chunk_size

        # Pushed back bytes, in the order they will be read again.
        self._pushback = bytearray()

        self._buffer = b''
        self._pos = 0
        self._eof = False

    @property
    def size(self) -> int:
        """
        The number of bytes that can be pushed back.
        """
        return self._size

    def _fill(self) -> bool:
        if self._eof:
            return False

        try:
            data = self._stream.read(self._chunk_size)
        except OSError as e:
            logger.exception("Error reading from the input stream")
            raise StreamError("Error reading from the input stream: %s" % e) from e

        if not data:
            self._eof = True
            return False

        self._buffer = data
        self._pos = 0
        return True

    def read_byte(self) -> int:
        """
        Read a single byte, returning -1 at the end of the stream.
        """
        if self._pushback:
            c = self._pushback[0]
            del self._pushback[0]
            return c

        if self._pos >= len(self._buffer) and not self._fill():
            return -1

        c = self._buffer[self._pos]
        self._pos += 1
        return c

    def read(self, n: int) -> bytes:
        """
        Read up to ``n`` bytes.  Fewer are returned only at the end of the
        stream.
        """
        out = bytearray()
        while len(out) < n:
            c = self.read_byte()
            if c == -1:
                break
            out.append(c)
        return bytes(out)

    def read_until(self, stop: int) -> bytes:
        """
        Return the buffered bytes preceding the next ``stop`` byte, leaving
        ``stop`` itself unread.  At most one chunk is read from the wrapped
        stream, and nothing is returned while pushed back bytes are pending,
        so an empty result does not mean the stream is exhausted.
        """
        if self._pushback:
            return b''

        if self._pos >= len(self._buffer) and not self._fill():
            return b''

        end = self._buffer.find(stop, self._pos)
        if end == -1:
            end = len(self._buffer)

        data = self._buffer[self._pos:end]
        self._pos = end
        return bytes(data)

    def unread(self, data: bytes | int) -> None:
        """
        Push back ``data`` so that it is the next thing read.
        """
        if isinstance(data, int):
            data = bytes((data,))

        if len(self._pushback) + len(data) > self._size:
            raise ValueError("Push back buffer is full")

        self._pushback[0:0] = data

    def skip(self, n: int) -> int:
        """
        Discard up to ``n`` bytes, returning how many were skipped.
        """
        return len(self.read(n))

    def __repr__(self) -> str:
        return "%s(size=%r, pending=%r)" % (
            self.__class__.__name__,
            self._size,
            bytes(self._pushback),
        )


class LimitedStream:
    """
    Wraps a stream so that no more than ``limit`` bytes are ever requested
    from it.  Used for request bodies where reading past Content-Length would
    block on the connection.
    """
    def __init__(self, stream: SupportsRead, limit: int) -> None:
        self._stream = stream
        self._remaining = limit

    def read(self, n: int = -1) -> bytes:
        if self._remaining <= 0:
            return b''
        if n < 0 or n > self._remaining:
            n = self._remaining

        data = self._stream.read(n)
        self._remaining -= len(data)
        return data


def read_line(reader: PushbackReader, max_length: int | None = None) -> str:
    """
    Reads a CRLF terminated line from ``reader`` and returns it decoded as
    ASCII, without the terminator.  Bytes outside of ASCII are replaced with
    U+FFFD.  Lines longer than ``max_length`` raise
    :class:`MultipartParseError`.
    """
    line = bytearray()
    previous = -1
    while True:
        c = reader.read_byte()

        if c == -1:
            raise UnexpectedEndOfStream("Stream ended in the middle of a line")

        if previous == CR and c == LF:
            break

        if previous != -1:
            line.append(previous)
            if max_length is not None and len(line) > max_length:
                raise MultipartParseError("Line exceeds %d bytes" % max_length)

        previous = c

    return line.decode('ascii', errors='replace')


def copy_to_boundary(reader: PushbackReader, out: SupportsWrite, boundary: bytes) -> int:
    """
    Copies ``reader`` to ``out`` until ``boundary`` is reached, and returns
    the number of bytes copied.  The boundary itself is pushed back onto
    ``reader``, so the caller must skip it.  The push back size of ``reader``
    must be at least ``len(boundary)``.
    """
    if not boundary:
        raise ValueError("boundary must not be empty")
    if reader.size < len(boundary):
        raise ValueError("Push back size %d is smaller than the boundary (%d bytes)" % (
            reader.size, len(boundary)))

    first = boundary[0]
    length = len(boundary)
    written = 0

    i = 0
    while i != length:
        # Every byte before the next candidate start would mismatch at
        # index 0 and be copied singly, so copy the whole run at once.
        if i == 0:
            run = reader.read_until(first)
            if run:
                out.write(run)
                written += len(run)
                continue

        c = reader.read_byte()

        if c == -1:
            raise UnexpectedEndOfStream("Stream ended before the boundary was found")

        if c == boundary[i]:
            i += 1
            continue

        reader.unread(c)
        reader.unread(boundary[:i])
        out.write(bytes((reader.read_byte(),)))
        written += 1
        i = 0

    reader.unread(boundary)
    return written
