import json

import transcript


def message_line(role, content, record_type="message"):
    return json.dumps({"type": record_type, "message": {"role": role, "content": content}}, ensure_ascii=False) + "\n"


def write(path, *lines):
    with open(path, "a", encoding="utf-8") as f:
        f.write("".join(lines))


def test_parse_message_record_accepts_plain_string_content():
    record = transcript.parse_message_record(message_line("user", "hi"))
    assert record == {"role": "user", "content": "hi", "thinking": ""}


def test_parse_message_record_drops_noise():
    assert transcript.parse_message_record("") is None
    assert transcript.parse_message_record("   \t") is None
    assert transcript.parse_message_record("{not json") is None
    assert transcript.parse_message_record('{"type": "session", "id": "x"}') is None
    assert transcript.parse_message_record('{"type": "message"}') is None
    assert transcript.parse_message_record(message_line("system", "boot")) is None
    assert transcript.parse_message_record(message_line("toolResult", "42")) is None
    assert transcript.parse_message_record(message_line("assistant", [])) is None
    assert transcript.parse_message_record(message_line("assistant", "")) is None
    assert transcript.parse_message_record("[1, 2, 3]") is None


def test_parse_message_record_splits_text_and_reasoning_items():
    line = message_line("assistant", [
        {"type": "thinking", "thinking": "first idea"},
        {"type": "text", "text": "part one"},
        {"type": "toolCall", "name": "exec"},
        "stray",
        {"type": "text", "text": {"value": "part two"}},
        {"type": "reasoning", "reasoning": "second idea"},
        {"type": "text", "text": {"other": "ignored"}},
    ])
    record = transcript.parse_message_record(line)
    assert record["role"] == "assistant"
    assert record["content"] == "part one\npart two"
    assert record["thinking"] == "first idea\nsecond idea"


def test_parse_message_record_keeps_thinking_only_records():
    record = transcript.parse_message_record(message_line("assistant", [{"type": "thinking", "text": "hmm"}]))
    assert record == {"role": "assistant", "content": "", "thinking": "hmm"}


def test_read_transcript_recent_scenario(tmp_path):
    path = tmp_path / "s.jsonl"
    lines = [message_line("user", "hi"), message_line("assistant", "hello")]
    write(path, *lines)

    result = transcript.read_transcript_recent(str(path), 50)
    assert result["messages"] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]
    assert result["thinking"] == ""
    assert result["offset"] == len("".join(lines).encode("utf-8"))


def test_read_transcript_recent_returns_last_limit_in_order(tmp_path):
    path = tmp_path / "s.jsonl"
    write(path, *[message_line("user" if i % 2 == 0 else "assistant", f"m{i}") for i in range(10)])
    write(path, '{"type": "custom"}\n', "garbage\n")

    result = transcript.read_transcript_recent(str(path), 3)
    assert [m["content"] for m in result["messages"]] == ["m7", "m8", "m9"]


def test_read_transcript_recent_missing_file(tmp_path):
    assert transcript.read_transcript_recent(str(tmp_path / "nope.jsonl")) == {"messages": [], "thinking": "", "offset": 0}


def test_read_transcript_increment_scenario(tmp_path):
    path = tmp_path / "s.jsonl"
    write(path, message_line("user", "hi"), message_line("assistant", "hello"))
    first = transcript.read_transcript_recent(str(path), 50)

    write(path, message_line("assistant", [
        {"type": "thinking", "thinking": "pondering"},
        {"type": "text", "text": "done"},
    ]))
    result = transcript.read_transcript_increment(str(path), first["offset"])

    assert result["messages"] == [{"role": "assistant", "content": "done"}]
    assert result["thinking"] == "pondering"
    assert result["offset"] == path.stat().st_size
    assert "resync" not in result


def test_read_transcript_increment_missing_file(tmp_path):
    result = transcript.read_transcript_increment(str(tmp_path / "missing.jsonl"), 5)
    assert result == {"messages": [], "thinking": "", "offset": 0}


def test_read_transcript_increment_noop_when_nothing_new(tmp_path):
    path = tmp_path / "s.jsonl"
    write(path, message_line("user", "hi"))
    size = path.stat().st_size
    assert transcript.read_transcript_increment(str(path), size) == {"messages": [], "thinking": "", "offset": size}


def test_out_of_range_offset_is_a_full_resync(tmp_path):
    path = tmp_path / "s.jsonl"
    write(path, message_line("user", "a"), message_line("assistant", "b"))
    size = path.stat().st_size

    from_zero = transcript.read_transcript_increment(str(path), 0)
    for bad in (size + 100, -3, "abc", float("nan")):
        result = transcript.read_transcript_increment(str(path), bad)
        assert result["messages"] == from_zero["messages"]
        assert result["thinking"] == from_zero["thinking"]
        assert result["offset"] == from_zero["offset"] == size
    assert transcript.read_transcript_increment(str(path), size + 100)["resync"] is True
    assert "resync" not in from_zero


def test_torn_trailing_line_is_counted_as_delivered(tmp_path):
    path = tmp_path / "s.jsonl"
    full = message_line("assistant", "complete later")
    write(path, message_line("user", "q"), full[:10])

    result = transcript.read_transcript_increment(str(path), 0)
    assert result["messages"] == [{"role": "user", "content": "q"}]
    assert result["offset"] == path.stat().st_size

    write(path, full[10:])
    rest = transcript.read_transcript_increment(str(path), result["offset"])
    assert rest["messages"] == []
    assert rest["offset"] == path.stat().st_size


def test_incremental_reads_match_one_full_read(tmp_path):
    path = tmp_path / "s.jsonl"
    path.touch()
    offset = 0
    collected = []
    offsets = []
    batches = [
        [message_line("user", "one"), '{"type": "meta"}\n'],
        [message_line("assistant", [{"type": "text", "text": "two"}]), "\r\n"],
        [message_line("user", "三 unicode"), message_line("system", "hidden")],
        [message_line("assistant", "four")],
    ]
    for batch in batches:
        write(path, *batch)
        result = transcript.read_transcript_increment(str(path), offset)
        collected.extend(result["messages"])
        offsets.append(result["offset"])
        offset = result["offset"]

    assert offsets == sorted(offsets)
    assert collected == transcript.read_transcript_recent(str(path), 10_000)["messages"]


def test_line_separator_inside_json_string_is_not_a_line_break(tmp_path):
    path = tmp_path / "s.jsonl"
    write(path, message_line("user", "before\u2028after"))
    result = transcript.read_transcript_recent(str(path), 5)
    assert result["messages"] == [{"role": "user", "content": "before\u2028after"}]


def test_reasoning_is_capped_to_most_recent_characters(tmp_path):
    path = tmp_path / "s.jsonl"
    write(path, message_line("assistant", [{"type": "thinking", "thinking": "a" * 9000}]))
    write(path, message_line("assistant", [{"type": "thinking", "thinking": "b" * 9000}]))

    result = transcript.read_transcript_recent(str(path), 5)
    assert len(result["thinking"]) == transcript.THINKING_CAP
    assert result["thinking"].endswith("b" * 9000)
    assert result["messages"] == []


def test_join_thinking_keeps_latest_content():
    joined = transcript.join_thinking("x" * 11990, "y" * 20)
    assert len(joined) == transcript.THINKING_CAP
    assert joined.endswith("\n\n" + "y" * 20)
    assert transcript.join_thinking("kept", "") == "kept"


def test_clamp_limit_and_sanitize_offset():
    assert transcript.clamp_limit("10") == 10
    assert transcript.clamp_limit(0) == 1
    assert transcript.clamp_limit(999) == 200
    assert transcript.clamp_limit("oops") == 50
    assert transcript.sanitize_offset("12", 100) == 12
    assert transcript.sanitize_offset(12.7, 100) == 12
    assert transcript.sanitize_offset(101, 100) == 0
    assert transcript.sanitize_offset(None, 100) == 0
    assert transcript.sanitize_offset(float("inf"), 100) == 0
