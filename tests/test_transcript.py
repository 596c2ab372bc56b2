"""Tests for token filtering, speaker labels and segment accumulation."""

from __future__ import annotations

import pytest

from tutorscribe.transcript import tokens as tokens_module
from tutorscribe.transcript.segments import Segment, SegmentAccumulator, format_transcript
from tutorscribe.transcript.speakers import SpeakerResolver
from tutorscribe.transcript.tokens import Token, is_displayable, parse_tokens


@pytest.mark.parametrize("text", ["", "   ", "end", "ENDPOINT", "<eos>", "<end>", None])
def test_is_displayable_rejects_control_artifacts(text) -> None:
    assert is_displayable(text) is False


@pytest.mark.parametrize("text", ["hello", " bye", "ending", "a < b", "<b> bold"])
def test_is_displayable_accepts_speech(text) -> None:
    assert is_displayable(text) is True


def test_token_from_payload_reads_alternative_keys() -> None:
    token = Token.from_payload({"text": "hi", "isFinal": True, "speakerTag": 3})

    assert token == Token(text="hi", is_final=True, speaker_tag=3)


def test_token_from_payload_prefers_first_speaker_key() -> None:
    token = Token.from_payload({"text": "x", "channel": 9, "speaker": "2"})

    assert token.speaker_tag == "2"
    assert tokens_module.SPEAKER_KEYS[0] == "speaker"


def test_token_from_payload_defaults() -> None:
    token = Token.from_payload({})

    assert token.text == ""
    assert token.is_final is False
    assert token.speaker_tag is None


def test_parse_tokens_skips_non_mappings() -> None:
    parsed = parse_tokens([{"text": "a"}, "junk", None, {"text": "b", "is_final": True}])

    assert [token.text for token in parsed] == ["a", "b"]
    assert parse_tokens(None) == []


def test_speaker_labels_are_stable_and_first_seen() -> None:
    resolver = SpeakerResolver()
    sequence = [7, 3, 7, "3", 11, 3, 7]

    labels = [resolver.label_for(tag) for tag in sequence]

    assert labels == [
        "Speaker 1",
        "Speaker 2",
        "Speaker 1",
        "Speaker 2",
        "Speaker 3",
        "Speaker 2",
        "Speaker 1",
    ]
    assert resolver.speaker_count() == 3
    assert len(set(resolver.labels.values())) == 3


def test_missing_speaker_tag_uses_default() -> None:
    resolver = SpeakerResolver()

    assert resolver.label_for(None) == resolver.label_for(0)
    assert resolver.speaker_count() == 1


def test_speaker_resolver_clear_restarts_numbering() -> None:
    resolver = SpeakerResolver()
    resolver.label_for(5)
    resolver.label_for(6)
    resolver.clear()

    assert resolver.label_for(6) == "Speaker 1"


def _tok(text: str, final: bool, speaker=1) -> dict:
    return {"text": text, "isFinal": final, "speakerTag": speaker}


def test_accumulator_end_to_end_scenario() -> None:
    accumulator = SegmentAccumulator()

    first = accumulator.process_batch(parse_tokens([_tok("hello ", True)]))
    assert first.final == [Segment("Speaker 1", "hello ")]
    assert first.live == first.final

    second = accumulator.process_batch(parse_tokens([_tok("world", False)]))
    assert second.final == [Segment("Speaker 1", "hello ")]
    assert second.live == [Segment("Speaker 1", "hello world")]

    third = accumulator.process_batch(
        parse_tokens([_tok("world", True), _tok(" bye", False, speaker=2)])
    )
    assert third.final == [Segment("Speaker 1", "hello world")]
    assert third.live == [
        Segment("Speaker 1", "hello world"),
        Segment("Speaker 2", " bye"),
    ]
    assert third.speaker_count == 2


def test_final_text_only_grows() -> None:
    accumulator = SegmentAccumulator()
    batches = [
        [_tok("Good", False)],
        [_tok("Good", True), _tok(" morning", True), _tok(" all", False)],
        [_tok(" all", True, speaker=2), _tok("<end>", True)],
        [_tok("end", True), _tok(" next", False, speaker=3)],
        [_tok(" next", True, speaker=3)],
    ]

    previous = ""
    for batch in batches:
        accumulator.process_batch(parse_tokens(batch))
        current = "".join(segment.text for segment in accumulator.final_segments())
        assert current.startswith(previous)
        previous = current

    assert previous == "Good morning all next"


def test_build_live_is_pure() -> None:
    accumulator = SegmentAccumulator()
    accumulator.append_final(parse_tokens([_tok("fixed ", True)]))
    partials = parse_tokens([_tok("maybe", False), _tok(" other", False, speaker=2)])

    first = accumulator.build_live(partials)
    second = accumulator.build_live(partials)

    assert first == second
    assert accumulator.final_segments() == [Segment("Speaker 1", "fixed ")]


def test_live_view_does_not_alias_final_segments() -> None:
    accumulator = SegmentAccumulator()
    update = accumulator.process_batch(parse_tokens([_tok("a", True)]))

    update.live[0].text = "mutated"
    update.final[0].text = "mutated"

    assert accumulator.final_segments() == [Segment("Speaker 1", "a")]


def test_filtered_tokens_do_not_register_speakers() -> None:
    accumulator = SegmentAccumulator()

    accumulator.process_batch(parse_tokens([_tok("<end>", True, speaker=4), _tok("  ", False, speaker=5)]))

    assert accumulator.speaker_count() == 0
    assert accumulator.final_segments() == []


def test_transcript_text_and_reset() -> None:
    accumulator = SegmentAccumulator()
    accumulator.process_batch(
        parse_tokens([_tok("Hi.", True, speaker=1), _tok("Hello.", True, speaker=2)])
    )

    assert accumulator.transcript_text() == "Speaker 1: Hi.\nSpeaker 2: Hello."
    assert format_transcript([]) == ""

    accumulator.reset()

    assert accumulator.final_segments() == []
    assert accumulator.speaker_count() == 0
