from pathlib import Path

import pytest

from scriptwriter.context import ProjectNotFoundError, SWError
from scriptwriter.pipelines.command import Target
from scriptwriter.utils import read_text


def test_project_lifecycle(make_engine, isolated_env):
    engine = make_engine()
    a = engine.create_project("  First  ", framework={"chapter_count": 12})
    b = engine.create_project("Second", "screenplay")
    assert a.id.startswith("script_")
    assert a.title == "First"
    assert a.type == "novel"
    assert b.type == "screenplay"
    assert [c["id"] for c in a.recommended_commands] == ["expand_scene", "polish_language", "add_tension"]
    for name in ("project.json", "memory.json", "chapter_summaries.json", "workflow_items.json", "chapter_draft.json"):
        assert (isolated_env / a.id / name).exists()

    engine.update_project(a.id, title="Renamed")
    assert [p.id for p in engine.list_projects()] == [a.id, b.id]
    assert engine.get_project(a.id).title == "Renamed"
    assert engine.get_project(a.id).framework == {"chapter_count": 12}

    engine.delete_project(b.id)
    with pytest.raises(ProjectNotFoundError):
        engine.get_project(b.id)
    with pytest.raises(ProjectNotFoundError):
        engine.delete_project(b.id)


def test_create_project_requires_title(make_engine):
    with pytest.raises(SWError):
        make_engine().create_project("   ")


def test_update_chapter_user_draft(make_engine):
    engine = make_engine()
    project = engine.create_project("Drafts")
    with pytest.raises(SWError):
        engine.update_chapter_user_draft(project.id, 0, "x")
    adv = engine.update_chapter_user_draft(project.id, 4, "  text  ")
    assert adv.ok
    outline = engine.load_outline(project.id)
    # No chapter count in the framework: the highest recorded index sets the length
    assert [c.index for c in outline.chapters] == [1, 2, 3, 4]
    assert engine.get_project(project.id).updated_at >= project.updated_at


def test_load_workflow_limit(make_engine):
    engine = make_engine()
    project = engine.create_project("Flow")
    for i in range(4):
        engine.manual_edit(project.id, f"t{i}")
    assert len(engine.load_workflow(project.id)) == 4
    last_two = engine.load_workflow(project.id, 2)
    assert [it["output"]["main_text"] for it in last_two] == ["t2", "t3"]


def test_export_requires_active_draft(make_engine):
    engine = make_engine()
    project = engine.create_project("Empty")
    with pytest.raises(SWError, match="no active draft"):
        engine.export(project.id)


def test_export_markdown_orders_chapters_and_scenes(make_engine, isolated_env):
    engine = make_engine()
    project = engine.create_project("Ordered")
    engine.manual_edit(project.id, "  third chapter  ", Target(3, 1))
    engine.manual_edit(project.id, "one-two", Target(1, 2))
    engine.manual_edit(project.id, "one-one", Target(1, 1))

    res = engine.export(project.id)
    md = res.content
    assert md.startswith("# Ordered\n\n")
    assert md.index("## Chapter 1") < md.index("## Chapter 3")
    assert md.index("### Scene 1\n\none-one") < md.index("### Scene 2\n\none-two")
    assert "third chapter\n" in md and "  third chapter" not in md

    assert res.format == "markdown"
    assert res.path.endswith(".md")
    assert Path(res.path).parent == isolated_env / project.id / "exports"
    assert read_text(res.path) == md
    assert res.to_dict()["size"] == len(md.encode("utf-8"))


def test_export_txt_and_html(make_engine):
    engine = make_engine()
    project = engine.create_project("Tags & <Brackets>")
    engine.manual_edit(project.id, "She wrote <b>bold</b> & left.")

    txt = engine.export(project.id, "txt", save=False)
    assert txt.content.startswith("Tags & <Brackets>\n\nChapter 1\n\nShe wrote")
    assert txt.path == ""

    html = engine.export(project.id, "HTML", save=False)
    assert html.format == "html"
    assert html.content.startswith("<!doctype html>")
    assert "&lt;b&gt;bold&lt;/b&gt; &amp; left." in html.content
    assert "<b>bold</b>" not in html.content

    unknown = engine.export(project.id, "pdf", save=False)
    assert unknown.format == "markdown"


def test_export_appendix(make_engine):
    engine = make_engine()
    project = engine.create_project("Appendix")
    engine.update_chapter_user_draft(project.id, 1, "user words")
    engine.manual_edit(project.id, "scene")

    md = engine.export(project.id, include_appendix=True, save=False).content
    assert "\n\n---\n\n## Appendix\n\n" in md
    for name in ("### memory.json", "### chapter_summaries.json", "### chapter_draft.json"):
        assert name in md
    assert md.index("scene") < md.index("## Appendix")
    assert '"user_draft": "user words"' in md

    txt = engine.export(project.id, "txt", include_appendix=True, save=False).content
    assert "==== Appendix ====" in txt
    assert "[memory]" in txt and "[chapter_summaries]" in txt and "[chapter_draft]" in txt
