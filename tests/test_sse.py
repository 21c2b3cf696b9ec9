import json
import logging

from feedai.services.sse import SSEDecoder, extract_delta, extract_message


def _event(text):
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False) + "\n"


def test_line_split_across_chunks_is_buffered():
    decoder = SSEDecoder()
    event = _event("Hello")

    assert decoder.feed(event[:12]) == []
    assert decoder.feed(event[12:]) == ["Hello"]
    assert decoder.content == "Hello"


def test_multibyte_character_split_across_byte_chunks():
    decoder = SSEDecoder()
    raw = (_event("苹果") + _event("新闻")).encode("utf-8")
    split = raw.index("果".encode("utf-8")) + 1

    deltas = decoder.feed(raw[:split]) + decoder.feed(raw[split:])

    assert deltas == ["苹果", "新闻"]
    assert decoder.content == "苹果新闻"


def test_done_marker_ends_stream():
    decoder = SSEDecoder()

    deltas = decoder.feed(_event("a") + "data: [DONE]\n" + _event("ignored"))

    assert deltas == ["a"]
    assert decoder.finished


def test_non_data_lines_and_crlf_are_handled():
    decoder = SSEDecoder()

    deltas = decoder.feed(": keep-alive\r\nevent: message\r\n" + _event("x").replace("\n", "\r\n") + "\r\n")

    assert deltas == ["x"]


def test_empty_deltas_are_skipped():
    decoder = SSEDecoder()
    role_only = "data: " + json.dumps({"choices": [{"delta": {"role": "assistant"}}]}) + "\n"

    assert decoder.feed(role_only + _event("")) == []
    assert decoder.content == ""


def test_malformed_events_are_logged_once_and_skipped(caplog):
    decoder = SSEDecoder()

    with caplog.at_level(logging.WARNING, logger="feedai.services.sse"):
        deltas = decoder.feed("data: {not json\n" + "data: {also bad\n" + _event("ok"))

    assert deltas == ["ok"]
    assert len([r for r in caplog.records if "malformed" in r.getMessage()]) == 1


def test_flush_processes_trailing_line_without_newline():
    decoder = SSEDecoder()

    assert decoder.feed(_event("tail").rstrip("\n")) == []
    assert decoder.flush() == ["tail"]


def test_extract_helpers_tolerate_missing_fields():
    assert extract_delta({"choices": []}) is None
    assert extract_delta({"choices": [{"delta": {"content": "hi"}}]}) == "hi"
    assert extract_message({}) == ""
    assert extract_message({"choices": [{"message": {"content": None}}]}) == ""
    assert extract_message({"choices": [{"message": {"content": "done"}}]}) == "done"
