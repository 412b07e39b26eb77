# pylint: disable=missing-module-docstring,missing-function-docstring

from context.conversation import ConversationContext, ConversationRecorder
from orchestrator.enums.error_kind import ErrorKind
from orchestrator.events import (
    AssistantUtterance,
    LoopError,
    LoopEventType,
    UserUtterance,
)
from constants import MAX_CONTEXT_CHARS, MAX_CONTEXT_TURNS


def _user(turn_id: int, text: str) -> UserUtterance:
    return UserUtterance(
        event_type=LoopEventType.USER_UTTERANCE, ts_ms=0, turn_id=turn_id, text=text,
    )


def _assistant(turn_id: int, text: str) -> AssistantUtterance:
    return AssistantUtterance(
        event_type=LoopEventType.ASSISTANT_UTTERANCE, ts_ms=0, turn_id=turn_id, text=text,
    )


def test_serialize_preserves_order_and_roles() -> None:
    ctx = ConversationContext()
    ctx.add_user_turn("hi", 1)
    ctx.add_assistant_turn("hello", 1)

    assert ctx.serialize() == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]


def test_turn_limit_drops_oldest() -> None:
    ctx = ConversationContext()
    for i in range(MAX_CONTEXT_TURNS + 2):
        ctx.add_user_turn(f"u{i}", i)

    assert len(ctx.turns) == MAX_CONTEXT_TURNS
    assert ctx.turns[0].text == "u2"


def test_char_limit_drops_oldest() -> None:
    ctx = ConversationContext()
    half = "x" * (MAX_CONTEXT_CHARS // 2)
    ctx.add_user_turn(half, 1)
    ctx.add_assistant_turn(half, 1)
    ctx.add_user_turn("y", 2)

    assert [t.text for t in ctx.turns] == [half, "y"]


def test_single_oversized_turn_is_kept_with_warning(captured_logs: list[str]) -> None:
    ctx = ConversationContext(loop_id="loop_1")
    ctx.add_user_turn("a", 1)
    ctx.add_assistant_turn("z" * (MAX_CONTEXT_CHARS + 1), 1)

    assert len(ctx.turns) == 1
    assert ctx.turns[0].role == "assistant"
    assert any("context_single_turn_oversized" in line for line in captured_logs)


def test_recorder_commits_complete_pairs_only() -> None:
    ctx = ConversationContext()
    recorder = ConversationRecorder(ctx)

    recorder(_user(1, "what time is it"))
    assert ctx.turns == ()

    recorder(_assistant(1, "It is noon."))
    assert [(t.role, t.text) for t in ctx.turns] == [
        ("user", "what time is it"),
        ("assistant", "It is noon."),
    ]
    assert recorder.last_committed_turn_id == 1


def test_recorder_drops_user_turn_when_think_fails() -> None:
    ctx = ConversationContext()
    recorder = ConversationRecorder(ctx)

    recorder(_user(1, "hello"))
    recorder(LoopError(
        event_type=LoopEventType.ERROR, ts_ms=0,
        kind=ErrorKind.AI_RESPONDER_FAILURE, message="timeout", turn_id=1,
    ))
    recorder(_user(2, "hello again"))
    recorder(_assistant(2, "Hi."))

    assert [t.text for t in ctx.turns] == ["hello again", "Hi."]


def test_recorder_ignores_mismatched_and_stale_turns() -> None:
    ctx = ConversationContext()
    recorder = ConversationRecorder(ctx)

    recorder(_user(3, "first"))
    recorder(_assistant(2, "wrong turn"))
    assert ctx.turns == ()

    recorder(_assistant(3, "right turn"))
    recorder(_user(3, "replayed"))
    recorder(_assistant(3, "replayed reply"))

    assert [t.turn_id for t in ctx.turns] == [3, 3]
    assert recorder.last_committed_turn_id == 3


def test_clear_empties_context() -> None:
    ctx = ConversationContext()
    ctx.add_user_turn("hi", 1)
    ctx.clear()
    assert ctx.serialize() == []
