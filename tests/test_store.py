import re

import pytest

from scriptwriter.artifacts import list_transcripts, read_transcript
from scriptwriter.config import Settings
from scriptwriter.context import NotFoundError, SWError
from scriptwriter.engine import ScriptEngine
from scriptwriter.logging import log_run, log_warning
from scriptwriter.pipelines.command import CommandRequest
from scriptwriter.store import FileBlobStore

from conftest import ScriptedCompletion


def test_save_load_list_and_delete(store, isolated_env):
    store.save("p1", "memory.json", {"facts": ["ü"]})
    store.save("p1", "drafts/draft_1.json", {"draft_id": "draft_1"})
    store.save("p1", "drafts/draft_2.json", {"draft_id": "draft_2"})
    (isolated_env / "p1" / "drafts" / "notes.txt").write_text("ignored", encoding="utf-8")

    assert store.load("p1", "memory.json") == {"facts": ["ü"]}
    assert store.list("p1", "drafts") == ["drafts/draft_1.json", "drafts/draft_2.json"]
    assert store.list("p1", "missing") == []
    assert store.list_projects() == ["p1"]

    store.delete_project("p1")
    assert store.list_projects() == []
    with pytest.raises(NotFoundError):
        store.delete_project("p1")


def test_load_missing_and_corrupt(store, isolated_env):
    with pytest.raises(NotFoundError):
        store.load("p1", "memory.json")
    (isolated_env / "p1").mkdir(parents=True)
    (isolated_env / "p1" / "memory.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(SWError) as exc:
        store.load("p1", "memory.json")
    assert not isinstance(exc.value, NotFoundError)


@pytest.mark.parametrize("pid, name", [("../x", "a.json"), ("p", "../a.json"), ("", "a.json"), ("p", "/abs.json"), ("a/b", "x.json")])
def test_rejects_path_escapes(store, pid, name):
    with pytest.raises(SWError):
        store.save(pid, name, {})


def test_no_temp_files_left_behind(store, isolated_env):
    for i in range(3):
        store.save("p1", "workflow_items.json", {"items": [i]})
    assert sorted(p.name for p in (isolated_env / "p1").iterdir()) == ["workflow_items.json"]
    assert store.load("p1", "workflow_items.json") == {"items": [2]}


def test_run_log_and_warnings(isolated_env, capsys):
    log_run("hello run log")
    log_warning("careful")
    text = (isolated_env / "run.log").read_text(encoding="utf-8")
    assert "hello run log" in text
    assert "WARNING: careful" in text
    assert "WARNING: careful" in capsys.readouterr().out


def test_transcripts_written_when_enabled(make_engine):
    engine = make_engine(ScriptedCompletion(['{"main_text": "Logged."}', '{"main_text": "Again."}']), log_llm=True)
    project = engine.create_project("Transcripts")
    engine.command(project.id, CommandRequest(user_input="write it"))
    engine.command(project.id, CommandRequest(user_input="write it again"))
    paths = list_transcripts(project.id)
    assert len(paths) == 2
    for p in paths:
        assert re.fullmatch(r"run_\d+_[0-9a-f]{6}_command_001_001_attempt1\.txt", p.name)
    parts = read_transcript(paths[0])
    assert "write it" in parts["user"]
    assert parts["response"] == '{"main_text": "Logged."}'
    assert parts["system"].startswith("You are a professional creative writing assistant.")
    assert read_transcript(paths[1])["response"] == '{"main_text": "Again."}'


def test_transcripts_follow_the_store_root(tmp_path, isolated_env):
    root = tmp_path / "elsewhere"
    engine = ScriptEngine(ScriptedCompletion(['{"main_text": "Here."}']), store=FileBlobStore(root), settings=Settings(log_llm=True))
    project = engine.create_project("Rooted")
    engine.command(project.id, CommandRequest(user_input="x"))
    assert len(list_transcripts(project.id, base=root)) == 1
    assert list_transcripts(project.id) == []


def test_no_transcripts_by_default(make_engine):
    engine = make_engine(ScriptedCompletion(['{"main_text": "Quiet."}']))
    project = engine.create_project("Quiet")
    engine.command(project.id, CommandRequest(user_input="x"))
    assert list_transcripts(project.id) == []
