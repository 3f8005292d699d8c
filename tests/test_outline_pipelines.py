import math

import pytest

from scriptwriter.context import CancelToken, CompletionNotReadyError, CompletionTransportError, OperationCancelled
from scriptwriter.outline import OutlineChapter, load_record, normalize_outline, save_record
from scriptwriter.parsing import parse_outline
from scriptwriter.pipelines.command import CommandRequest
from scriptwriter.pipelines.outline_batch import estimate_batch_max_tokens, generate_outline_batch, initial_total
from scriptwriter.pipelines.common import PipelineContext
from scriptwriter.config import Settings
from scriptwriter.workflow import load_items

from conftest import ScriptedCompletion, full_batch_responder, outline_doc, requested_range


def _ctx(store, completion, **settings):
    return PipelineContext(completion=completion, store=store, settings=Settings(**settings), project_id="p")


def test_token_budget_and_initial_total():
    assert estimate_batch_max_tokens(6) == 1200
    assert estimate_batch_max_tokens(10) == 1600
    assert estimate_batch_max_tokens(14) == 2200
    assert estimate_batch_max_tokens(20) == 3200
    assert estimate_batch_max_tokens(21) == 4096
    assert initial_total({"chapter_count": 10}) == 10
    assert initial_total({"chapter_count": 3}) == 8
    assert initial_total({}) == 20


def test_batch_accepted_on_first_attempt(store):
    stub = ScriptedCompletion([outline_doc(1, 5)])
    res = generate_outline_batch(_ctx(store, stub), {}, 1, 5, 5)
    assert res.accepted and res.attempts == 1
    assert len(stub.calls) == 1
    assert stub.calls[0]["max_tokens"] == 1200
    assert "ONLY chapters 1-5 (total 5 chapters)" in stub.user_prompts[0]


def test_batch_retries_then_falls_back_to_last_partial(store):
    stub = ScriptedCompletion([
        outline_doc(1, 10, skip=range(3, 11)),
        "I cannot do that.",
        outline_doc(1, 10, skip=range(5, 11)),
    ])
    res = generate_outline_batch(_ctx(store, stub), {}, 1, 10, 10)
    assert not res.accepted
    assert res.attempts == 3
    assert len(stub.calls) == 3
    assert [c.index for c in res.outline.chapters] == [1, 2, 3, 4]


def test_batch_drops_chapters_outside_range(store):
    stub = ScriptedCompletion([outline_doc(3, 9)])
    res = generate_outline_batch(_ctx(store, stub), {}, 5, 7, 10)
    assert res.accepted
    assert [c.index for c in res.outline.chapters] == [5, 6, 7]


def test_batch_all_unparsable_returns_no_outline(store):
    stub = ScriptedCompletion(["nope", '{"chapters": [', "still nope"])
    res = generate_outline_batch(_ctx(store, stub), {}, 1, 3, 3)
    assert res.outline is None
    assert not res.parsed


def test_batch_transport_error_consumes_attempt(store):
    stub = ScriptedCompletion([CompletionTransportError("timeout"), outline_doc(1, 3)])
    res = generate_outline_batch(_ctx(store, stub), {}, 1, 3, 3)
    assert res.accepted and res.attempts == 2


def test_batch_transport_errors_on_every_attempt_raise(store):
    stub = ScriptedCompletion([CompletionTransportError("down")] * 3)
    with pytest.raises(CompletionTransportError):
        generate_outline_batch(_ctx(store, stub), {}, 1, 3, 3)
    assert len(stub.calls) == 3


def test_batch_not_ready_aborts_immediately(store):
    stub = ScriptedCompletion([CompletionNotReadyError("no key"), outline_doc(1, 3)])
    with pytest.raises(CompletionNotReadyError):
        generate_outline_batch(_ctx(store, stub), {}, 1, 3, 3)
    assert len(stub.calls) == 1


def test_cancelled_token_prevents_any_call(store):
    stub = ScriptedCompletion([outline_doc(1, 3)])
    ctx = _ctx(store, stub)
    ctx.cancel = CancelToken()
    ctx.cancel.cancel()
    with pytest.raises(OperationCancelled):
        generate_outline_batch(ctx, {}, 1, 3, 3)
    assert stub.calls == []


def test_initial_generation_end_to_end_with_truncated_chapter(make_engine):
    doc = outline_doc(1, 10)
    cut = doc.index('{"index": 8') + 25
    stub = ScriptedCompletion([doc[:cut], "- she opens the letter\n- the storm starts"])
    engine = make_engine(stub)
    project = engine.create_project("Storm Letters", framework={"chapter_count": 10, "premise": "a letter"})
    progress = []

    res = engine.generate_initial(project.id, progress=lambda pct, msg: progress.append(pct))

    assert requested_range(stub.calls[0]["messages"]) == (1, 10, 10)
    chapters = res.outline.chapters
    assert [c.index for c in chapters] == list(range(1, 11))
    for i in range(1, 8):
        assert chapters[i - 1] == OutlineChapter(i, f"Title {i}", f"Summary of chapter {i}.", f"- beat {i}a\n- beat {i}b")
    for i in (8, 9, 10):
        assert chapters[i - 1] == OutlineChapter(i, f"Chapter {i}", "", "")
    assert res.batch.accepted

    # First snapshot holds the key beats for chapter 1 scene 1
    draft = engine.load_draft(project.id)
    assert draft.draft_id == res.draft_id
    assert draft.content.chapters[0].title == "Title 1"
    assert draft.content.chapters[0].scenes[0].text.startswith("- she opens")
    assert engine.get_project(project.id).state.active_draft_id == res.draft_id
    assert engine.load_summaries(project.id).get(1).draft_id == res.draft_id
    assert progress[-1] == 100
    assert progress == sorted(progress)

    record = load_record(engine.store, project.id)
    assert len(record.chapters) == 10


def test_initial_generation_keeps_user_drafts(make_engine):
    stub = ScriptedCompletion([full_batch_responder])
    engine = make_engine(stub)
    project = engine.create_project("Kept", framework={"chapter_count": 8})
    engine.update_chapter_user_draft(project.id, 2, "  hand written  ")
    res = engine.generate_initial(project.id, with_beats=False)
    assert res.draft is None
    record = load_record(engine.store, project.id)
    assert record.entry(2).user_draft == "hand written"
    assert record.entry(2).title == "Title 2"


@pytest.mark.parametrize("count, batch", [(25, None), (20, 7), (12, 5), (100, None)])
def test_fill_converges_within_ceil_of_batches(make_engine, count, batch):
    stub = ScriptedCompletion(default=full_batch_responder)
    engine = make_engine(stub)
    project = engine.create_project("Long", framework={"chapter_count": count})
    size = batch or (20 if count <= 30 else 16 if count <= 80 else 12)

    invocations = 0
    while True:
        res = engine.fill_outline_next(project.id, batch)
        if res.done:
            break
        assert res.status == "filled"
        invocations += 1
        assert invocations <= math.ceil(count / size)

    assert invocations == math.ceil(count / size)
    assert len(stub.calls) == invocations
    outline = engine.load_outline(project.id)
    assert [c.index for c in outline.chapters] == list(range(1, count + 1))
    assert all(c.is_meaningful() and c.title == f"Title {c.index}" for c in outline.chapters)

    # Terminal result again, still no completion call
    again = engine.fill_outline_next(project.id, batch)
    assert again.done
    assert len(stub.calls) == invocations


def test_fill_resumes_from_first_incomplete_and_preserves_user_draft(make_engine, store):
    stub = ScriptedCompletion(default=full_batch_responder)
    engine = make_engine(stub)
    project = engine.create_project("Gap", framework={"chapter_count": 6})
    record = load_record(store, project.id)
    record.apply_outline(normalize_outline(parse_outline(outline_doc(1, 6, skip=(3,))).outline, 6))
    record.upsert_user_draft(3, "draft for three")
    save_record(store, project.id, record)

    res = engine.fill_outline_next(project.id, 2)
    assert (res.start, res.end) == (3, 4)
    assert "existing_outline_context" in stub.user_prompts[0]
    assert "- Chapter 2 Title 2" in stub.user_prompts[0]

    record = load_record(store, project.id)
    assert record.entry(3).title == "Title 3"
    assert record.entry(3).user_draft == "draft for three"
    assert engine.fill_outline_next(project.id).done

    items = load_items(store, project.id)
    assert items[-1]["type"] == "fill_outline"
    assert items[-1]["target"]["chapter"] == 3


def test_fill_failure_writes_nothing(make_engine, store):
    stub = ScriptedCompletion(["garbage", "more garbage", "still garbage"])
    engine = make_engine(stub)
    project = engine.create_project("Fail", framework={"chapter_count": 8})
    res = engine.fill_outline_next(project.id)
    assert res.status == "failed"
    assert load_record(store, project.id).chapters == []
    assert load_items(store, project.id) == []


def test_fill_until_complete(make_engine):
    stub = ScriptedCompletion(default=full_batch_responder)
    engine = make_engine(stub)
    project = engine.create_project("All", framework={"chapter_count": 30})
    results = engine.fill_until_complete(project.id, 10)
    assert [r.status for r in results] == ["filled", "filled", "filled", "complete"]
    assert len(stub.calls) == 3


def test_fill_outline_via_command_id(make_engine):
    stub = ScriptedCompletion(default=full_batch_responder)
    engine = make_engine(stub)
    project = engine.create_project("Cmd", framework={"chapter_count": 8})
    res = engine.command(project.id, CommandRequest(options={"commandId": "FILL_OUTLINE_NEXT"}))
    assert res.fill is not None and res.fill.status == "filled"
    assert res.draft_id == ""
    assert res.workflow_item_id
