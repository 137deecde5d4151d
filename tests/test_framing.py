import json

import pytest

from rendezvous.exceptions import FrameTooLargeError
from rendezvous.protocol.framing import StreamFramer, feed


def test_message_split_across_reads():
    framer = StreamFramer()

    first = framer.feed(b'{"a":1}\n{"b":2')
    second = framer.feed(b"}\n")

    assert [json.loads(m) for m in first + second] == [{"a": 1}, {"b": 2}]
    assert framer.buffered == b""


STREAM = b'{"type":"offer","sdp":"x"}\n\n  \r\n{"b":2}\r\nplain text\n{"tail":'


def _one_shot(data: bytes) -> tuple[bytes, list[bytes]]:
    return feed(b"", data)


@pytest.mark.parametrize("split", range(len(STREAM) + 1))
def test_any_two_way_split_gives_same_messages(split):
    expected_rest, expected = _one_shot(STREAM)

    rest, head = feed(b"", STREAM[:split])
    rest, tail = feed(rest, STREAM[split:])

    assert head + tail == expected
    assert rest == expected_rest


def test_byte_at_a_time_gives_same_messages():
    expected_rest, expected = _one_shot(STREAM)

    rest, messages = b"", []
    for i in range(len(STREAM)):
        rest, out = feed(rest, STREAM[i:i + 1])
        messages.extend(out)

    assert messages == expected
    assert rest == expected_rest == b'{"tail":'


def test_blank_messages_are_dropped_and_lines_trimmed():
    rest, messages = feed(b"", b"\n   \n\t\r\n  hello  \r\n")
    assert messages == [b"hello"]
    assert rest == b""


def test_unterminated_message_stays_buffered():
    framer = StreamFramer()
    assert framer.feed(b'{"never":"ends"') == []
    assert framer.feed(b", more") == []
    assert framer.buffered == b'{"never":"ends", more'


def test_multibyte_character_split_between_reads():
    data = '{"name":"café"}\n'.encode("utf-8")
    cut = data.index(b"\xa9")

    framer = StreamFramer()
    assert framer.feed(data[:cut]) == []
    assert framer.feed(data[cut:]) == ['{"name":"café"}']


def test_buffer_limit():
    framer = StreamFramer(max_buffer_size=8)
    assert framer.feed(b"ok\n1234") == ["ok"]

    with pytest.raises(FrameTooLargeError) as exc_info:
        framer.feed(b"56789")

    assert exc_info.value.limit == 8
    assert framer.buffered == b""


def test_clear_discards_residue():
    framer = StreamFramer()
    framer.feed(b"partial")
    framer.clear()
    assert framer.feed(b" line\n") == ["line"]
