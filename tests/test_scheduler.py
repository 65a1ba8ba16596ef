from __future__ import annotations

import threading

import pytest

from storyloom.context import build_context
from storyloom.conversation import ConversationState, PersonaContext
from storyloom.scheduler import FoldState, SummarizationScheduler, render_turns

from conftest import FakeSummarizer


def _append_and_check(state: ConversationState, scheduler: SummarizationScheduler, n: int) -> list[int]:
    """Append ``n`` alternating turns, running the scheduler after each; return boundaries seen."""
    boundaries = []
    for i in range(n):
        if i % 2 == 0:
            state.add_user_turn(f"u{i}")
        else:
            state.add_assistant_turn(f"a{i}")
        scheduler.maybe_fold(state)
        boundaries.append(state.conversation.fold_boundary)
    return boundaries


def test_folds_once_threshold_exceeded_and_keeps_recent_turns():
    summarizer = FakeSummarizer()
    scheduler = SummarizationScheduler(summarizer, max_turns=10, keep_count=4)
    state = ConversationState()

    boundaries = _append_and_check(state, scheduler, 21)

    # 21 unfolded > 20 -> fold [0:17]
    assert boundaries[:20] == [0] * 20
    assert state.conversation.fold_boundary == 17
    assert state.conversation.summary == "summary#1"
    assert summarizer.calls[0][0] == ""
    assert summarizer.calls[0][1].splitlines()[0] == "user: u0"
    assert len(summarizer.calls[0][1].splitlines()) == 17


def test_fold_of_a_backlog_with_keep_four():
    # History grew while folding was unavailable; one fold then catches up.
    summarizer = FakeSummarizer()
    scheduler = SummarizationScheduler(summarizer, max_turns=10, keep_count=4)
    state = ConversationState()
    for i in range(25):
        (state.add_user_turn if i % 2 == 0 else state.add_assistant_turn)(f"t{i}")

    assert scheduler.maybe_fold(state) is True

    assert state.conversation.fold_boundary == 21
    assert state.conversation.summary
    ctx = build_context(state.conversation, PersonaContext("bg", "hero"))
    assert len(ctx) == 1 + 4
    assert [t.content for t in ctx[1:]] == ["t21", "t22", "t23", "t24"]


def test_keep_zero_folds_everything():
    scheduler = SummarizationScheduler(FakeSummarizer(), max_turns=1, keep_count=0)
    state = ConversationState()
    _append_and_check(state, scheduler, 3)
    assert state.conversation.fold_boundary == 3
    assert len(build_context(state.conversation, PersonaContext())) == 1


def test_boundary_is_monotonic_over_a_long_session():
    scheduler = SummarizationScheduler(FakeSummarizer(), max_turns=2, keep_count=1)
    state = ConversationState()
    boundaries = _append_and_check(state, scheduler, 60)
    assert boundaries == sorted(boundaries)
    assert state.conversation.unfolded_count <= 2 * 2


def test_existing_summary_is_passed_back_in():
    summarizer = FakeSummarizer()
    scheduler = SummarizationScheduler(summarizer, max_turns=1, keep_count=0)
    state = ConversationState()
    _append_and_check(state, scheduler, 6)
    assert [c[0] for c in summarizer.calls] == ["", "summary#1"]


def test_noop_fold_leaves_everything_identical():
    summarizer = FakeSummarizer()
    scheduler = SummarizationScheduler(summarizer, max_turns=10, keep_count=4)
    state = ConversationState()
    for i in range(6):
        state.add_user_turn(f"u{i}")
    state.apply_fold("prior", 3)
    before = state.conversation.to_dict()

    # end_index = 6 - 4 = 2 <= boundary 3
    assert scheduler.fold(state) is False

    assert state.conversation.to_dict() == before
    assert summarizer.calls == []


def test_failed_fold_keeps_state_and_retries_on_next_append():
    summarizer = FakeSummarizer(fail_times=1)
    scheduler = SummarizationScheduler(summarizer, max_turns=2, keep_count=0)
    state = ConversationState()

    _append_and_check(state, scheduler, 5)
    assert len(summarizer.calls) == 1
    assert state.conversation.fold_boundary == 0
    assert state.conversation.summary == ""
    assert scheduler.state is FoldState.IDLE

    _append_and_check(state, scheduler, 1)
    assert len(summarizer.calls) == 2
    assert state.conversation.fold_boundary == 6
    assert state.conversation.summary == "summary#2"


def test_trigger_while_folding_is_ignored():
    entered = threading.Event()
    release = threading.Event()

    class SlowSummarizer:
        calls = 0

        def update(self, existing_summary: str, new_text: str) -> str:
            SlowSummarizer.calls += 1
            entered.set()
            release.wait(timeout=5)
            return "slow"

    scheduler = SummarizationScheduler(SlowSummarizer(), max_turns=1, keep_count=0)
    state = ConversationState()
    for i in range(3):
        state.add_user_turn(f"u{i}")

    worker = threading.Thread(target=scheduler.fold, args=(state,))
    worker.start()
    assert entered.wait(timeout=5)
    assert scheduler.state is FoldState.FOLDING
    assert scheduler.maybe_fold(state) is False
    release.set()
    worker.join(timeout=5)

    assert SlowSummarizer.calls == 1
    assert scheduler.state is FoldState.IDLE
    assert state.conversation.fold_boundary == 3


def test_unexpected_errors_propagate():
    class Broken:
        def update(self, existing_summary: str, new_text: str) -> str:
            raise KeyError("bug")

    scheduler = SummarizationScheduler(Broken(), max_turns=0, keep_count=0)
    state = ConversationState()
    state.add_user_turn("x")
    with pytest.raises(KeyError):
        scheduler.maybe_fold(state)
    assert scheduler.state is FoldState.IDLE


@pytest.mark.parametrize("kwargs", [{"max_turns": -1}, {"keep_count": -2}, {"keep_count": 1.5}])
def test_rejects_bad_policy(kwargs):
    with pytest.raises(ValueError):
        SummarizationScheduler(FakeSummarizer(), **kwargs)


def test_render_turns_format():
    state = ConversationState()
    state.add_user_turn("I open the door.")
    state.add_assistant_turn("It creaks.")
    assert render_turns(state.conversation.turns) == "user: I open the door.\nassistant: It creaks."
