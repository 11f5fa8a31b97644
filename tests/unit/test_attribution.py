"""Unit tests for attribution response validation and the attribution client."""

from __future__ import annotations

import json

import pytest

from chaptervoice.errors import AttributionError
from chaptervoice.llm.attribution import AttributionClient
from chaptervoice.llm.openai_client import OpenAIProviderError
from chaptervoice.llm.retry import RetryPolicy
from chaptervoice.llm.schema import AttributionResponseError, parse_attribution_response
from chaptervoice.models.datatypes import (
    ANNOUNCER_SPEAKER_ID,
    NARRATOR_SPEAKER_ID,
    Chapter,
    SegmentKind,
    TextChunk,
)
from chaptervoice.speakers.aliases import AliasResolver
from chaptervoice.telemetry.progress import ChapterProgress
from chaptervoice.text.chunking import Chunker
from chaptervoice.text.quotes import QuoteSpanSplitter


_MAGE_TEXT = "\"It won't!\" he slammed the table. \"Eleven Primas are coming!\""


def _chunk(text: str, chunk_index: int = 0, char_start: int = 0) -> TextChunk:
    return TextChunk(
        chapter_id="ch-1",
        chunk_index=chunk_index,
        text=text,
        char_start=char_start,
        char_end=char_start + len(text),
        boundary_strategy="chapter_end",
    )


def _client(chat_client: object, **kwargs: object) -> AttributionClient:
    return AttributionClient(
        chat_client,  # type: ignore[arg-type]
        retry_policy=RetryPolicy(max_attempts=3, backoff_base_seconds=0.0),
        sleeper=lambda _seconds: None,
        **kwargs,  # type: ignore[arg-type]
    )


def test_parse_attribution_response_accepts_whitespace_variations() -> None:
    spans = QuoteSpanSplitter().split(_MAGE_TEXT)
    raw = json.dumps(
        {
            "segments": [
                {"span": 0, "speaker": " Mage ", "text": "\"It won't!\"", "kind": "dialogue"},
                {"span": 1, "speaker": "narrator", "text": "he  slammed the table.", "kind": "narration"},
                {"span": 2, "speaker": "Mage", "text": '"Eleven Primas are coming!"', "kind": "dialogue"},
            ]
        }
    )

    parsed = parse_attribution_response(raw, spans)

    assert [entry.speaker for entry in parsed] == ["Mage", "narrator", "Mage"]
    assert parsed[1].kind is SegmentKind.NARRATION


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("not json", "not valid JSON"),
        ("[]", "root must be an object"),
        ('{"segments": []}', "expected 3 segment"),
        (
            json.dumps(
                {
                    "segments": [
                        {"span": 0, "speaker": "Mage", "text": "\"It won't!\"", "kind": "dialogue"},
                        {"span": 1, "speaker": "narrator", "text": "he hit the table.", "kind": "narration"},
                        {"span": 2, "speaker": "Mage", "text": '"Eleven Primas are coming!"', "kind": "dialogue"},
                    ]
                }
            ),
            "does not reconstruct",
        ),
        (
            json.dumps(
                {
                    "segments": [
                        {"span": 0, "speaker": "", "text": "\"It won't!\"", "kind": "dialogue"},
                        {"span": 1, "speaker": "narrator", "text": "he slammed the table.", "kind": "narration"},
                        {"span": 2, "speaker": "Mage", "text": '"Eleven Primas are coming!"', "kind": "dialogue"},
                    ]
                }
            ),
            "empty speaker",
        ),
        (
            json.dumps(
                {
                    "segments": [
                        {"span": 2, "speaker": "Mage", "text": "\"It won't!\"", "kind": "dialogue"},
                        {"span": 1, "speaker": "narrator", "text": "he slammed the table.", "kind": "narration"},
                        {"span": 0, "speaker": "Mage", "text": '"Eleven Primas are coming!"', "kind": "dialogue"},
                    ]
                }
            ),
            "refers to span 2",
        ),
    ],
)
def test_parse_attribution_response_rejects_contract_violations(raw: str, message: str) -> None:
    spans = QuoteSpanSplitter().split(_MAGE_TEXT)

    with pytest.raises(AttributionResponseError, match=message):
        parse_attribution_response(raw, spans)


def test_attribute_chunk_splits_dialogue_around_narration(fake_chat_client) -> None:
    """Interleaved narration stays its own segment between two mage lines."""

    spans = _client(fake_chat_client).attribute_chunk(_chunk(_MAGE_TEXT))

    assert [(span.speaker_id, span.kind, span.text) for span in spans] == [
        ("mage", SegmentKind.DIALOGUE, "\"It won't!\""),
        (NARRATOR_SPEAKER_ID, SegmentKind.NARRATION, "he slammed the table."),
        ("mage", SegmentKind.DIALOGUE, '"Eleven Primas are coming!"'),
    ]
    assert fake_chat_client.calls == 1


def test_attribute_chunk_keeps_narration_with_narrator_when_service_credits_everything(
    fake_chat_client,
) -> None:
    """A model crediting every span to one character cannot move narration to it."""

    fake_chat_client.credit_every_span_to = "mage"

    spans = _client(fake_chat_client).attribute_chunk(_chunk(_MAGE_TEXT))

    assert [(span.speaker_id, span.kind, span.text) for span in spans] == [
        ("mage", SegmentKind.DIALOGUE, "\"It won't!\""),
        (NARRATOR_SPEAKER_ID, SegmentKind.NARRATION, "he slammed the table."),
        ("mage", SegmentKind.DIALOGUE, '"Eleven Primas are coming!"'),
    ]


def test_attribute_chunk_lets_service_decide_flagged_paragraphs(fake_chat_client) -> None:
    fake_chat_client.credit_every_span_to = "mage"

    spans = _client(fake_chat_client).attribute_chunk(
        _chunk('He said "wait for me and ran off.\nThe door closed.')
    )

    assert [(span.speaker_id, span.kind, span.needs_review) for span in spans] == [
        ("mage", SegmentKind.DIALOGUE, True),
        (NARRATOR_SPEAKER_ID, SegmentKind.NARRATION, False),
    ]


def test_attribute_chunk_resolves_aliases_and_unknown_speakers(make_chat_client) -> None:
    chat = make_chat_client(speakers={"Viper": "Villy", "Who": "unknown"})
    client = _client(chat, alias_resolver=AliasResolver.from_mapping({"Vilastromoz": ["Villy"]}))

    spans = client.attribute_chunk(_chunk('"Viper speaks." "Who goes there?"'))

    assert [span.speaker_id for span in spans] == ["vilastromoz", NARRATOR_SPEAKER_ID]


def test_attribute_chunk_skips_the_service_for_system_only_chunks(fake_chat_client) -> None:
    spans = _client(fake_chat_client).attribute_chunk(
        _chunk("[Level up!]\n--\nDING! New skill acquired.", char_start=100)
    )

    assert fake_chat_client.calls == 0
    assert [span.speaker_id for span in spans] == [
        ANNOUNCER_SPEAKER_ID,
        NARRATOR_SPEAKER_ID,
        ANNOUNCER_SPEAKER_ID,
    ]
    assert spans[0].char_start == 100
    assert spans[0].kind is SegmentKind.SYSTEM


def test_attribute_chunk_retries_malformed_responses(fake_chat_client) -> None:
    fake_chat_client.malformed_responses = 2

    spans = _client(fake_chat_client).attribute_chunk(_chunk(_MAGE_TEXT))

    assert len(spans) == 3
    assert fake_chat_client.calls == 3


def test_attribute_chunk_gives_up_after_retry_budget(fake_chat_client) -> None:
    fake_chat_client.malformed_responses = 5
    client = _client(fake_chat_client)

    with pytest.raises(AttributionError) as exc_info:
        client.attribute_chunk(_chunk(_MAGE_TEXT, chunk_index=4))

    assert exc_info.value.chunk_index == 4
    assert exc_info.value.attempts == 3
    assert exc_info.value.stage == "attribute"
    assert client.request_count == 3


def test_attribute_chunk_does_not_retry_permanent_failures() -> None:
    class _RejectingChatClient:
        calls = 0

        def chat_completion_json_schema(self, **_kwargs: object) -> str:
            self.calls += 1
            raise OpenAIProviderError("bad key", failure_kind="invalid_api_key")

    chat = _RejectingChatClient()

    with pytest.raises(AttributionError) as exc_info:
        _client(chat).attribute_chunk(_chunk(_MAGE_TEXT))

    assert chat.calls == 1
    assert exc_info.value.hint is not None
    assert "API key" in exc_info.value.hint


def test_attribute_chapter_orders_segments_and_reports_progress(fake_chat_client) -> None:
    text = "".join(f'"Line {n}!" the mage said.\n' for n in range(6))
    chapter = Chapter(chapter_id="ch-1", text=text)
    chunks = Chunker(budget_bytes=60).split(chapter)
    progress = ChapterProgress(chapter_id="ch-1")

    segments = _client(fake_chat_client, parallelism=3).attribute_chapter(
        chapter, chunks, progress
    )

    assert len(chunks) > 1
    assert [segment.global_index for segment in segments] == list(range(12))
    assert [segment.text for segment in segments[:2]] == ['"Line 0!"', "the mage said."]
    assert segments[-2].text == '"Line 5!"'
    for segment in segments:
        assert text[segment.char_start : segment.char_end] == segment.text
    snapshot = progress.snapshot()
    assert snapshot.current_chunk == len(chunks)
    assert snapshot.total_chunks == len(chunks)
    assert snapshot.speaker_counts == {"mage": 6, NARRATOR_SPEAKER_ID: 6}


def test_attribute_chapter_raises_lowest_failed_chunk() -> None:
    """A failed chunk fails the chapter; no partial segment list is returned."""

    class _FailingChunksChatClient:
        def chat_completion_json_schema(self, *, user_prompt: str, **_kwargs: object) -> str:
            if "Line 1" in user_prompt or "Line 3" in user_prompt:
                return "{"
            spans = json.loads(user_prompt.split("Spans to attribute:\n", 1)[1])
            return json.dumps(
                {
                    "segments": [
                        {"span": span["span"], "speaker": "narrator", "text": span["text"], "kind": "narration"}
                        for span in spans
                    ]
                }
            )

    text = "".join(f"Line {n} is narration only.\n" for n in range(4))
    chapter = Chapter(chapter_id="ch-1", text=text)
    chunks = Chunker(budget_bytes=30).split(chapter)

    with pytest.raises(AttributionError) as exc_info:
        _client(_FailingChunksChatClient(), parallelism=4).attribute_chapter(chapter, chunks)

    assert len(chunks) == 4
    assert exc_info.value.chunk_index == 1
