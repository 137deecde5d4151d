"""
Stream Framing

Turns a byte stream without message boundaries into discrete messages.
Producers terminate every message with a newline; the framer keeps whatever
follows the last newline until more bytes arrive.

Framing works on bytes rather than decoded text so that a multi-byte UTF-8
character split across two reads is reassembled before decoding.
"""

import logging

from rendezvous.exceptions import FrameTooLargeError

logger = logging.getLogger(__name__)

DELIMITER = b"\n"


def feed(
    buffer: bytes,
    chunk: bytes,
    delimiter: bytes = DELIMITER
) -> tuple[bytes, list[bytes]]:
    """
    Append a chunk to the buffer and cut out every complete message.

    Args:
        buffer: Residue from the previous call (b"" to start)
        chunk: Newly received bytes
        delimiter: Message terminator

    Returns:
        Tuple of (residue, messages). Messages are trimmed and in stream
        order; whitespace-only messages are dropped.
    """
    buffer += chunk
    messages: list[bytes] = []

    while True:
        index = buffer.find(delimiter)
        if index < 0:
            break
        message = buffer[:index].strip()
        buffer = buffer[index + len(delimiter):]
        if message:
            messages.append(message)

    return buffer, messages


class StreamFramer:
    """
    Stateful framer for one stream connection.

    Feed it chunks as they arrive; it returns the complete messages decoded
    as text and keeps the residue for the next call.
    """

    def __init__(
        self,
        delimiter: bytes = DELIMITER,
        max_buffer_size: int | None = None
    ):
        """
        Initialize the framer.

        Args:
            delimiter: Message terminator
            max_buffer_size: Max unterminated bytes kept before giving up.
                None disables the limit.
        """
        self._delimiter = delimiter
        self._max_buffer_size = max_buffer_size
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[str]:
        """
        Consume a chunk and return the messages it completed.

        Raises:
            FrameTooLargeError: If the residue grows past max_buffer_size
        """
        self._buffer, messages = feed(self._buffer, chunk, self._delimiter)

        if self._max_buffer_size is not None and len(self._buffer) > self._max_buffer_size:
            buffered = len(self._buffer)
            self._buffer = b""
            raise FrameTooLargeError(buffered, self._max_buffer_size)

        return [m.decode("utf-8", errors="replace") for m in messages]

    @property
    def buffered(self) -> bytes:
        """Bytes received but not yet terminated."""
        return self._buffer

    def clear(self) -> None:
        """Drop any residue."""
        if self._buffer:
            logger.debug(f"Discarding {len(self._buffer)} unterminated bytes")
        self._buffer = b""
