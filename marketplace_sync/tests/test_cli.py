"""
Unit tests for marketplace_sync.cli.

Runs the subcommands through main() with temporary feed/store files and
--no-github, so no network connections are made.
"""
import json
import os

import pytest

from marketplace_sync.cli import _load_dotenv, build_parser, main
from marketplace_sync.storage import schema
from marketplace_sync.storage.graph_store import GraphRecordStore

FEED = [
    {
        "package": {
            "name": "acme/widgets",
            "repository": "https://github.com/acme/widgets",
            "favers": 10,
            "downloads": {"total": 100, "monthly": 20, "daily": 1},
            "versions": {
                "1.0.0": {"version": "1.0.0", "version_normalized": "1.0.0.0", "time": "2024-01-10T12:00:00+00:00"},
            },
        }
    },
    {"name": "beta/tools", "versions": {"dev-main": {"version": "dev-main", "time": "2024-02-01T00:00:00+00:00"}}},
]


@pytest.fixture
def paths(tmp_path):
    feed = tmp_path / "feed.json"
    feed.write_text(json.dumps(FEED), encoding="utf-8")
    return {
        "feed": str(feed),
        "store": str(tmp_path / "data" / "marketplace.json"),
        "env": str(tmp_path / "no.env"),
        "tmp": tmp_path,
    }


def _run(paths, *args):
    return main(["--env-file", paths["env"], "--store", paths["store"], *args])


# ── Parser ────────────────────────────────────────────────────────────────────

def test_parser_import_defaults():
    args = build_parser().parse_args(["import", "--feed", "feed.json"])
    assert args.command == "import"
    assert args.workers == 1
    assert not args.force
    assert not args.no_github
    assert not args.no_cleanup


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_parser_import_requires_feed():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["import"])


# ── import ────────────────────────────────────────────────────────────────────

def test_import_writes_store(paths, capsys):
    assert _run(paths, "import", "--feed", paths["feed"], "--no-github") == 0

    store = GraphRecordStore.load(paths["store"])
    titles = sorted(store.get_property(p, "title") for p in store.find_descendants(store.root(), schema.PACKAGE))
    assert titles == ["acme/widgets", "beta/tools"]
    assert "Packages processed : 2" in capsys.readouterr().out


def test_import_prunes_on_second_run(paths, capsys):
    _run(paths, "import", "--feed", paths["feed"], "--no-github")
    with open(paths["feed"], "w", encoding="utf-8") as fh:
        json.dump(FEED[:1], fh)

    assert _run(paths, "import", "--feed", paths["feed"], "--no-github", "--workers", "2") == 0

    store = GraphRecordStore.load(paths["store"])
    assert [v.name for v in store.list_children(store.root(), schema.VENDOR)] == ["acme"]
    out = capsys.readouterr().out
    assert "Packages removed   : 1" in out
    assert "Vendors removed    : 1" in out


def test_import_no_cleanup_keeps_records(paths):
    _run(paths, "import", "--feed", paths["feed"], "--no-github")
    with open(paths["feed"], "w", encoding="utf-8") as fh:
        json.dump([], fh)

    _run(paths, "import", "--feed", paths["feed"], "--no-github", "--no-cleanup")

    store = GraphRecordStore.load(paths["store"])
    assert len(store.find_descendants(store.root(), schema.PACKAGE)) == 2


def test_import_missing_feed_fails(paths):
    assert _run(paths, "import", "--feed", str(paths["tmp"] / "missing.json"), "--no-github") == 1
    assert not os.path.exists(paths["store"])


def test_import_invalid_feed_fails(paths):
    with open(paths["feed"], "w", encoding="utf-8") as fh:
        fh.write("{oops")
    assert _run(paths, "import", "--feed", paths["feed"], "--no-github") == 1


# ── status / export ───────────────────────────────────────────────────────────

def test_status(paths, capsys):
    _run(paths, "import", "--feed", paths["feed"], "--no-github")
    capsys.readouterr()

    assert _run(paths, "status") == 0

    out = capsys.readouterr().out
    assert "Packages      : 2" in out
    assert "Vendors       : 2" in out


def test_status_missing_store(paths, capsys):
    assert _run(paths, "status") == 0
    assert "(missing)" in capsys.readouterr().out


def test_export(paths, capsys):
    _run(paths, "import", "--feed", paths["feed"], "--no-github")
    out_path = str(paths["tmp"] / "packages.csv")

    assert _run(paths, "export", "--out", out_path) == 0

    with open(out_path, encoding="utf-8") as fh:
        lines = fh.read().splitlines()
    assert len(lines) == 3
    assert lines[0].startswith("vendor,package,")


# ── .env loading ──────────────────────────────────────────────────────────────

def test_load_dotenv(tmp_path, monkeypatch):
    env = tmp_path / ".env"
    env.write_text('# comment\nMARKETPLACE_TEST_A="quoted"\nMARKETPLACE_TEST_B=plain\nnot a pair\n', encoding="utf-8")
    monkeypatch.delenv("MARKETPLACE_TEST_A", raising=False)
    monkeypatch.setenv("MARKETPLACE_TEST_B", "existing")

    loaded = _load_dotenv(str(env))

    assert loaded == {"MARKETPLACE_TEST_A": "quoted"}
    assert os.environ["MARKETPLACE_TEST_A"] == "quoted"
    assert os.environ["MARKETPLACE_TEST_B"] == "existing"
    monkeypatch.delenv("MARKETPLACE_TEST_A")


def test_load_dotenv_missing_file(tmp_path):
    assert _load_dotenv(str(tmp_path / "absent.env")) == {}
