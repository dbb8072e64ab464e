import json
import sys

import pytest

from reelrank import cli
from reelrank.models import FeatureType


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["prog", *argv])
    cli.main()


def _write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_main_dispatches_to_subcommand(monkeypatch):
    called = {}

    def fake_init(args):
        called["command"] = args.command

    monkeypatch.setattr(cli, "cmd_init_db", fake_init)
    _run(monkeypatch, "init-db")

    assert called["command"] == "init-db"


def test_cli_parses_rank_args(monkeypatch):
    captured = {}

    def fake_rank(args):
        captured.update(vars(args))

    monkeypatch.setattr(cli, "cmd_rank", fake_rank)
    _run(monkeypatch, "rank", "--input", "in.json", "--user", "alice", "--lambda", "0.4", "--count", "5", "--json")

    assert captured["input"] == "in.json"
    assert captured["user"] == "alice"
    assert captured["mmr_lambda"] == 0.4
    assert captured["discovery"] is None
    assert captured["count"] == 5
    assert captured["json"] is True
    assert captured["no_store"] is False


def test_cli_parses_feedback_direction(monkeypatch):
    captured = []
    monkeypatch.setattr(cli, "cmd_feedback", lambda args: captured.append((args.item_id, args.up, args.reason)))

    _run(monkeypatch, "feedback", "alice", "603", "--up", "--reason", "love_all")
    _run(monkeypatch, "feedback", "alice", "604", "--down")

    assert captured == [(603, True, "love_all"), (604, False, None)]


def test_feedback_requires_direction(monkeypatch):
    monkeypatch.setattr(cli, "cmd_feedback", lambda args: None)
    with pytest.raises(SystemExit):
        _run(monkeypatch, "feedback", "alice", "603")


def test_cli_parses_pairwise_tags(monkeypatch):
    captured = {}

    def fake_pairwise(args):
        captured.update(winner=args.winner, loser=args.loser, tag=args.tag)

    monkeypatch.setattr(cli, "cmd_pairwise", fake_pairwise)
    _run(monkeypatch, "pairwise", "alice", "1", "2", "--tag", "tmdb", "--tag", "trakt")

    assert captured == {"winner": 1, "loser": 2, "tag": ["tmdb", "trakt"]}


def test_parse_candidates_accepts_ids_and_objects():
    pool = cli._parse_candidates([
        7,
        {"item_id": 8, "title": "Heat", "score": 0.6, "sources": [{"source": "tmdb", "confidence": 0.9}]},
    ])

    assert pool[0] == 7
    assert pool[1].item_id == 8
    assert pool[1].sources[0].source == "tmdb"
    assert pool[1].sources[0].item_id == 8
    assert pool[1].score == 0.6


def test_parse_details_accepts_list_or_mapping():
    payload = {"id": 603, "title": "The Matrix", "genres": [{"id": 878, "name": "Science Fiction"}]}

    assert cli._parse_details([payload])[603].genre_names == ["Science Fiction"]
    assert cli._parse_details({"603": payload})[603].title == "The Matrix"
    assert cli._parse_details(None) == {}


def test_read_json_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        cli._read_json(str(tmp_path / "nope.json"))


def test_rank_command_prints_json(monkeypatch, capsys, tmp_path, fresh_db):
    path = _write_json(tmp_path / "rank.json", {
        "user_id": "alice",
        "history": [
            {"item_id": 101, "rating": 1.0},
            {"item_id": 102, "rating": 5.0, "liked": True},
        ],
        "candidates": [
            101,
            {"item_id": 102, "title": "Heat", "score": 0.5, "sources": [{"source": "tmdb", "confidence": 0.9}]},
            103,
        ],
        "details": [{"id": 102, "title": "Heat", "genres": [{"id": 80, "name": "Crime"}]}],
    })

    _run(monkeypatch, "rank", "--input", path, "--json")
    output = json.loads(capsys.readouterr().out)

    assert output["status"] == "ok"
    assert [c["item_id"] for c in output["candidates"]] == [102, 103]
    assert output["candidates"][0]["sources"] == ["tmdb"]
    assert output["candidates"][0]["score"] > 0.75
    assert output["excluded"] == {"101": "You rated this 1 and did not like it"}


def test_quiz_command_updates_feedback(monkeypatch, fresh_db):
    _run(monkeypatch, "quiz", "alice", "genre_rating", "18", "5", "--name", "Drama")

    row = fresh_db.get_feature_feedback("alice", FeatureType.GENRE, 18)
    assert (row.name, row.positive_count, row.negative_count) == ("Drama", 3, 0)


def test_feedback_command_uses_details_file(monkeypatch, tmp_path, fresh_db):
    path = _write_json(tmp_path / "details.json", [
        {"id": 42, "title": "Heat", "genres": [{"id": 80, "name": "Crime"}], "directors": [{"id": 1, "name": "Michael Mann"}]},
    ])

    _run(monkeypatch, "feedback", "alice", "42", "--down", "--details", path)

    assert fresh_db.load_blocked_suggestions("alice") == {42}
    row = fresh_db.get_feature_feedback("alice", FeatureType.DIRECTOR, 1)
    assert row.negative_count == 1


def test_experiment_commands_round_trip(monkeypatch, capsys, tmp_path, fresh_db):
    path = _write_json(tmp_path / "test.json", {
        "id": "lambda-test",
        "status": "running",
        "variants": [{"name": "control", "params": {"mmr_lambda": 0.3}}],
        "traffic_split": {"control": 1.0},
        "primary_metric": "click_rate",
    })

    _run(monkeypatch, "ab-create", "--file", path)
    _run(monkeypatch, "ab-assign", "lambda-test", "alice")
    _run(monkeypatch, "ab-metric", "lambda-test", "alice", "click_rate", "1")
    _run(monkeypatch, "ab-metric", "lambda-test", "bob", "click_rate", "1")
    capsys.readouterr()

    _run(monkeypatch, "ab-results", "lambda-test", "--json")
    output = json.loads(capsys.readouterr().out)

    assert output["control"] == "control"
    assert output["variants"]["control"]["users"] == 1
    assert output["variants"]["control"]["metrics"]["click_rate"]["count"] == 1
    assert output["comparisons"] == []


def test_unblock_command_restores_item(monkeypatch, fresh_db):
    fresh_db.block_suggestion("alice", 42)
    fresh_db.block_suggestion("alice", 43)

    _run(monkeypatch, "unblock", "alice", "42")
    _run(monkeypatch, "unblock", "alice", "99")

    assert fresh_db.load_blocked_suggestions("alice") == {43}


def test_learn_command_seeds_feedback_and_transitions(monkeypatch, capsys, tmp_path, fresh_db):
    path = _write_json(tmp_path / "history.json", {
        "user_id": "alice",
        "history": [
            {"item_id": 1, "rating": 5.0, "watched_at": "2024-01-01"},
            {"item_id": 2, "rating": 4.5, "watched_at": "2024-01-02"},
            {"item_id": 1, "rating": 4.0, "watched_at": "2024-01-03"},
            {"item_id": 2, "rating": 4.0, "watched_at": "2024-01-04"},
        ],
        "details": [
            {"id": 1, "title": "Paris, Texas", "genres": [{"id": 18, "name": "Drama"}]},
            {"id": 2, "title": "Unforgiven", "genres": [{"id": 37, "name": "Western"}]},
        ],
    })

    _run(monkeypatch, "learn", "--input", path, "--seed", "--json")
    output = json.loads(capsys.readouterr().out)

    assert output["transitions"] == 2
    assert output["features_seeded"] == 2
    row = fresh_db.get_feature_feedback("alice", FeatureType.GENRE, 18)
    assert (row.positive_count, row.negative_count) == (5, 0)
    rows = {(r["from_genre_name"], r["to_genre_name"]): r["rating_count"] for r in fresh_db.load_genre_transitions("alice")}
    assert rows == {("Drama", "Western"): 2, ("Western", "Drama"): 1}
