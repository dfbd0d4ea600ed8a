"""Unit tests for NDJSON stream reassembly."""

import pytest

from app.core.exceptions import BackendResponseError, StreamProtocolError
from app.services.stream_assembler import Completed, Fragment, StreamAssembler, StreamStatus


def _feed_all(assembler: StreamAssembler, chunks: list[bytes]) -> list:
    events = []
    for chunk in chunks:
        events.extend(assembler.feed(chunk))
    return events


def test_fragments_forwarded_in_order_then_one_terminal() -> None:
    assembler = StreamAssembler("m1")
    events = _feed_all(
        assembler,
        [b'{"response":"Hel"}\n', b'{"response":"lo"}\n', b'{"done":true}\n'],
    )

    assert events[:2] == [Fragment("Hel"), Fragment("lo")]
    assert isinstance(events[2], Completed)
    assert len([e for e in events if isinstance(e, Completed)]) == 1
    assert events[2].text == "Hello"
    assert assembler.state.accumulated_text == "Hello"
    assert assembler.state.chunk_count == 2
    assert assembler.state.status is StreamStatus.CLOSED


def test_segment_split_across_arrivals_is_retained() -> None:
    assembler = StreamAssembler("m1")

    assert assembler.feed(b'{"respo') == []
    assert assembler.state.parse_buffer == '{"respo'
    assert assembler.feed(b'nse":"Hi"}\n{"done"') == [Fragment("Hi")]
    events = assembler.feed(b":true}\n")

    assert len(events) == 1 and isinstance(events[0], Completed)


def test_multibyte_character_split_across_arrivals() -> None:
    assembler = StreamAssembler("m1")
    encoded = '{"response":"café"}\n'.encode()
    cut = encoded.index("é".encode()) + 1

    assert assembler.feed(encoded[:cut]) == []
    assert assembler.feed(encoded[cut:]) == [Fragment("café")]


def test_malformed_segment_is_discarded() -> None:
    assembler = StreamAssembler("m1")
    events = _feed_all(
        assembler,
        [b'{"response":"a"}\nnot json\n[1, 2]\n{"response":"b"}\n{"done":true}\n'],
    )

    assert [e.text for e in events if isinstance(e, Fragment)] == ["a", "b"]
    assert events[-1].text == "ab"


def test_multiple_records_in_one_arrival() -> None:
    assembler = StreamAssembler("m1")
    events = assembler.feed(b'{"response":"x"}\n{"response":"y"}\n')

    assert events == [Fragment("x"), Fragment("y")]
    assert not assembler.closed


def test_done_record_may_carry_final_text_and_stats() -> None:
    assembler = StreamAssembler("m1")
    events = assembler.feed(b'{"response":"end","done":true,"eval_count":3,"context":[1]}\n')

    assert events[0] == Fragment("end")
    assert events[1] == Completed(text="end", stats={"eval_count": 3})


def test_nothing_after_terminal_event() -> None:
    assembler = StreamAssembler("m1")
    assembler.feed(b'{"response":"a"}\n{"done":true}\n{"response":"late"}\n')

    assert assembler.feed(b'{"response":"later"}\n') == []
    assert assembler.finish() == []
    assert assembler.state.accumulated_text == "a"


def test_error_record_closes_stream() -> None:
    assembler = StreamAssembler("m1")

    with pytest.raises(BackendResponseError, match="model 'x' not found"):
        assembler.feed(b'{"error":"model \'x\' not found"}\n')
    assert assembler.closed


def test_oversized_line_is_rejected() -> None:
    assembler = StreamAssembler("m1", max_line_chars=32)

    with pytest.raises(StreamProtocolError):
        assembler.feed(b'{"response":"' + b"x" * 64)
    assert assembler.closed
    assert assembler.state.parse_buffer == ""


def test_finish_parses_tail_without_newline() -> None:
    assembler = StreamAssembler("m1")
    assembler.feed(b'{"response":"Hi"}\n')
    assert assembler.feed(b'{"done":true}') == []

    tail = assembler.finish()
    assert len(tail) == 1 and isinstance(tail[0], Completed)
    assert tail[0].text == "Hi"


def test_finish_without_terminal_record_is_truncation() -> None:
    assembler = StreamAssembler("m1")
    assembler.feed(b'{"response":"partial"}\n')

    with pytest.raises(StreamProtocolError, match="ended before"):
        assembler.finish()
    assert assembler.closed


def test_should_preview_fires_on_every_nth_chunk_past_threshold() -> None:
    assembler = StreamAssembler("m1", preview_min_chars=10, preview_every_n_chunks=3)
    assembler.feed(b'{"response":"aaaaaa"}\n{"response":"bbbbbb"}\n')
    assert not assembler.should_preview()  # two chunks

    assembler.feed(b'{"response":"cccccc"}\n')
    assert assembler.should_preview()

    assembler.state.hashtags_extracted_early = True
    assert not assembler.should_preview()


def test_should_preview_needs_minimum_length() -> None:
    assembler = StreamAssembler("m1", preview_min_chars=200, preview_every_n_chunks=1)
    assembler.feed(b'{"response":"short"}\n')

    assert not assembler.should_preview()
