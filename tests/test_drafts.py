import pytest

from scriptwriter.context import DraftNotFoundError, ProjectNotFoundError
from scriptwriter.drafts import DraftContent, Scene, extract_scene_text, update_draft_content
from scriptwriter.pipelines.command import Target
from scriptwriter.outline import load_record
from scriptwriter.workflow import load_items


def _seed(engine, project_id):
    engine.manual_edit(project_id, "one-one", Target(1, 1))
    engine.manual_edit(project_id, "two-one", Target(2, 1))
    return engine.manual_edit(project_id, "two-two", Target(2, 2))


def test_snapshot_from_base_changes_exactly_one_scene(make_engine):
    engine = make_engine()
    project = engine.create_project("Snapshots")
    a = _seed(engine, project.id)
    a_before = engine.load_draft(project.id, a.draft_id).to_dict()

    b = engine.manual_edit(project.id, "edited", Target(2, 1))

    a_after = engine.load_draft(project.id, a.draft_id)
    assert a_after.to_dict() == a_before
    b_loaded = engine.load_draft(project.id, b.draft_id)
    assert b_loaded.draft_id != a.draft_id

    a_content = a_after.content.to_dict()
    b_content = b_loaded.content.to_dict()
    assert b_content["chapters"][1]["scenes"][0]["text"] == "edited"
    b_content["chapters"][1]["scenes"][0]["text"] = "two-one"
    assert b_content == a_content


def test_update_draft_content_appends_missing_chapter_and_scene():
    content = update_draft_content(None, 3, 2, "text", chapter_title="Three")
    assert content.to_dict() == {"chapters": [{"index": 3, "title": "Three", "scenes": [{"index": 2, "title": "", "text": "text"}]}]}
    assert DraftContent.from_dict(content.to_dict()) == content


def test_extract_scene_text_fallbacks(make_engine):
    engine = make_engine()
    project = engine.create_project("Fallback")
    assert extract_scene_text(None, 1, 1) == ""
    d = engine.manual_edit(project.id, "first scene", Target(2, 3))
    assert extract_scene_text(d, 2, 3) == "first scene"
    # Missing target falls back to the first scene of the first chapter
    assert extract_scene_text(d, 9, 9) == "first scene"


def test_pointer_and_cursor_follow_snapshots(make_engine):
    engine = make_engine()
    project = engine.create_project("Pointer")
    d = engine.manual_edit(project.id, "x", Target(4, 2, 7))
    state = engine.get_project(project.id).state
    assert state.active_draft_id == d.draft_id
    assert (state.cursor.chapter, state.cursor.scene, state.cursor.segment) == (4, 2, 7)


def test_rewind_repoints_to_first_chapter_and_scene(make_engine):
    engine = make_engine()
    project = engine.create_project("Rewind")
    first = engine.manual_edit(project.id, "a", Target(3, 2))
    engine.manual_edit(project.id, "b", Target(5, 1))

    p = engine.rewind(project.id, first.draft_id)
    assert p.state.active_draft_id == first.draft_id
    assert (p.state.cursor.chapter, p.state.cursor.scene) == (3, 2)
    assert engine.get_project(project.id).state.active_draft_id == first.draft_id


def test_rewind_unknown_draft_raises_and_keeps_pointer(make_engine):
    engine = make_engine()
    project = engine.create_project("Unknown")
    d = engine.manual_edit(project.id, "a")
    for bad in ("draft_nope", "", "../project"):
        with pytest.raises(DraftNotFoundError):
            engine.rewind(project.id, bad)
    assert engine.get_project(project.id).state.active_draft_id == d.draft_id


def test_list_drafts_newest_first(make_engine):
    engine = make_engine()
    project = engine.create_project("List")
    ids = [engine.manual_edit(project.id, str(i), user_prompt=f"note {i}").draft_id for i in range(3)]
    metas = engine.list_drafts(project.id)
    assert [m.draft_id for m in metas] == list(reversed(ids))
    assert metas[0].user_prompt == "note 2"


def test_manual_edit_base_notes_and_workflow(make_engine, store):
    engine = make_engine()
    project = engine.create_project("Manual")
    base = engine.manual_edit(project.id, "base text", Target(1, 1))
    engine.manual_edit(project.id, "other", Target(1, 2))
    d = engine.manual_edit(project.id, "x" * 400, Target(2, 1), base_draft_id=base.draft_id, sync_user_draft=True)

    assert d.notes.user_prompt == "manual_edit"
    # Built from the explicit base, so chapter 1 has only scene 1
    assert [s.index for s in d.content.chapter(1).scenes] == [1]
    assert load_record(store, project.id).entry(2).user_draft == "x" * 400

    items = load_items(store, project.id)
    assert [it["type"] for it in items] == ["manual_edit"] * 3
    assert len(items[-1]["output"]["main_text"]) == 300
    assert items[-1]["refs"]["depends_on"] == [items[-2]["id"]]
    assert items[0]["refs"]["depends_on"] == []


def test_manual_edit_unknown_base_or_project(make_engine):
    engine = make_engine()
    project = engine.create_project("Bad base")
    with pytest.raises(DraftNotFoundError):
        engine.manual_edit(project.id, "x", base_draft_id="draft_missing")
    with pytest.raises(ProjectNotFoundError):
        engine.manual_edit("script_missing", "x")


def test_active_draft_missing_file_is_none(make_engine, store, isolated_env):
    engine = make_engine()
    project = engine.create_project("Gone")
    d = engine.manual_edit(project.id, "x")
    (isolated_env / project.id / "drafts" / f"{d.draft_id}.json").unlink()
    assert engine.load_draft(project.id) is None
    assert engine.list_drafts(project.id) == []


def test_scene_is_frozen():
    s = Scene(1, "t")
    with pytest.raises(AttributeError):
        s.text = "changed"
