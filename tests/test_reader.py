import json

import reader


def test_watcher_selects_agents_and_parses_names():
    agents = [{"id": "main"}, {"id": "coder"}, {"id": "helper"}]
    assert reader.select_agents(agents, ["helper", "ghost", "main"]) == [{"id": "helper"}, {"id": "main"}]
    assert reader.select_agents(agents, []) == agents
    assert reader.parse_names(["main=Boss", "bad", "coder= Dev "]) == {"main": "Boss", "coder": "Dev"}


def test_prefs_survive_between_runs(tmp_path):
    path = str(tmp_path / "state" / "watcher.json")
    assert reader.load_prefs(path) == {"agents": [], "names": {}}

    prefs = {"agents": ["helper", "main"], "names": {"main": "Boss"}}
    reader.save_prefs(prefs, path)
    assert reader.load_prefs(path) == prefs


def test_unreadable_prefs_fall_back_to_empty(tmp_path, capsys):
    path = tmp_path / "watcher.json"
    path.write_text("{not json", encoding="utf-8")
    assert reader.load_prefs(str(path)) == {"agents": [], "names": {}}
    assert "[WATCH]" in capsys.readouterr().err

    path.write_text(json.dumps({"agents": "main", "names": {"main": "", "coder": "Dev", "x": 3}}), encoding="utf-8")
    assert reader.load_prefs(str(path)) == {"agents": [], "names": {"coder": "Dev"}}


def test_resolve_view_prefers_flags_over_saved_choices():
    saved = {"agents": ["helper", "main"], "names": {"main": "Boss"}}

    wanted, names, changed = reader.resolve_view("", [], saved)
    assert wanted == ["helper", "main"]
    assert names == {"main": "Boss"}
    assert changed is False

    wanted, names, changed = reader.resolve_view("coder, main", ["coder=Dev"], saved)
    assert wanted == ["coder", "main"]
    assert names == {"main": "Boss", "coder": "Dev"}
    assert changed is True

    wanted, names, changed = reader.resolve_view("", [], saved, reset=True)
    assert wanted == []
    assert names == {}
    assert changed is True


def test_parser_accepts_preference_flags(tmp_path):
    args = reader.build_parser().parse_args(["--prefs", str(tmp_path / "p.json"), "--reset", "--no-save"])
    assert args.prefs.endswith("p.json")
    assert args.reset is True
    assert args.no_save is True
    assert args.command is None
