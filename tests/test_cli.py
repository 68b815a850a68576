"""Command-line tests that run ``main`` in-process."""
import json
from datetime import date

import pytest

from mnote.main import build_parser, main

TODAY = date.today().isoformat()


@pytest.fixture
def cli(test_config, clean_logging, capsys):
    """Run one mnote command and return (stdout, stderr)."""
    def run(*argv):
        main(list(argv))
        captured = capsys.readouterr()
        return captured.out, captured.err
    return run


def _exit_code(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestParser:
    def test_edit_flags(self):
        args = build_parser().parse_args(["edit", "work", "2", "-b", "archive"])
        assert args.book == "work"
        assert args.index == 2
        assert args.target_book == "archive"

    def test_global_options_after_command(self):
        args = build_parser().parse_args(["list", "--dbLocation", "/tmp/x"])
        assert args.db_location == "/tmp/x"

    def test_global_options_before_command(self):
        args = build_parser().parse_args(["--db-location", "/tmp/x", "--log-level", "DEBUG", "where"])
        assert args.db_location == "/tmp/x"
        assert args.log_level == "DEBUG"

    def test_nested_command_keeps_global_option(self):
        args = build_parser().parse_args(["--db-location", "/tmp/x", "config", "get", "editor"])
        assert args.db_location == "/tmp/x"

    def test_defaults_without_options(self):
        args = build_parser().parse_args(["list"])
        assert args.db_location is None
        assert args.log_level is None


class TestNoteCommands:
    def test_add_and_view(self, cli, notes_root):
        out, _ = cli("add", "work", "# First note\nbody")
        assert f"Note saved to {notes_root.resolve() / 'work' / (TODAY + '-first-note.md')}" in out

        out, _ = cli("view", "work")
        assert f"--- Note 1 ({TODAY}-first-note.md) ---" in out
        assert "body" in out

        out, _ = cli("view", "work", "1")
        assert out == "# First note\nbody\n"

    def test_add_with_tags_and_title(self, cli, notes_root):
        cli("add", "work", "text", "--title", "Tagged", "--tags", "a, b")
        content = (notes_root / "work" / f"{TODAY}-tagged.md").read_text()
        assert "- a" in content and "- b" in content

    def test_view_empty_book(self, cli):
        out, _ = cli("view", "nothing")
        assert out.strip() == "No notes found in book: nothing"

    def test_view_bad_index(self, cli, capsys):
        cli("add", "work", "x")
        assert _exit_code(["view", "work", "5"]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_list(self, cli):
        out, _ = cli("list")
        assert out.strip() == "No books found."
        cli("add", "b", "x")
        cli("add", "a/c", "y")
        out, _ = cli("list")
        assert out.split() == ["a", "a/c", "b"]

    def test_find(self, cli):
        cli("add", "work", "kubernetes cluster notes", "--tags", "ops")
        cli("add", "home", "garden plans")
        out, _ = cli("find", "kube")
        assert f"--- work/{TODAY}-kubernetes-cluster-notes.md ---" in out
        assert "garden" not in out

        out, _ = cli("find", "-t", "ops")
        assert "kubernetes" in out

        out, _ = cli("find", "garden", "-b", "work")
        assert out.strip() == "No matching notes found."

    def test_delete_with_force(self, cli, notes_root):
        cli("add", "work", "bye")
        out, _ = cli("delete", "work", "1", "-f")
        assert out.strip() == f"Deleted note {TODAY}-bye.md"
        assert list((notes_root / "work").iterdir()) == []

    def test_delete_aborted(self, cli, monkeypatch, notes_root):
        cli("add", "work", "keep")
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        out, _ = cli("delete", "work", "1")
        assert "Aborted." in out
        assert len(list((notes_root / "work").iterdir())) == 1

    def test_delete_confirmed(self, cli, monkeypatch, notes_root):
        cli("add", "work", "gone")
        monkeypatch.setattr("builtins.input", lambda prompt: "y")
        cli("delete", "work", "1")
        assert list((notes_root / "work").iterdir()) == []

    def test_edit_content(self, cli, notes_root):
        cli("add", "work", "old")
        out, _ = cli("edit", "work", "1", "-c", "new content")
        assert "Updated note" in out
        assert (notes_root / "work" / f"{TODAY}-old.md").read_text() == "new content"

    def test_edit_move(self, cli, notes_root):
        cli("add", "inbox", "moving")
        out, _ = cli("edit", "inbox", "1", "-b", "archive")
        assert f"Moved note to archive/{TODAY}-moving.md" in out
        assert not any((notes_root / "inbox").iterdir())

    def test_edit_rename_book(self, cli, notes_root):
        cli("add", "old", "x")
        out, _ = cli("edit", "old", "-n", "new")
        assert "Renamed book old to new" in out
        assert (notes_root / "new").is_dir()
        assert not (notes_root / "old").exists()

    def test_edit_requires_index(self, cli, capsys):
        cli("add", "work", "x")
        assert _exit_code(["edit", "work"]) == 2

    def test_traversal_reported(self, test_config, clean_logging, capsys):
        assert _exit_code(["add", "../outside", "x"]) == 1
        assert "Error:" in capsys.readouterr().err


class TestMaintenanceCommands:
    def test_where(self, cli, notes_root):
        out, _ = cli("where")
        assert f"Notes location: {notes_root.resolve()} (from standard location)" in out
        assert f"Search index: {notes_root.resolve() / 'mnote.db'}" in out

    def test_db_location_flag(self, cli, tmp_path):
        other = tmp_path / "other-root"
        out, _ = cli("--db-location", str(other), "where")
        assert f"{other.resolve()} (from --db-location flag)" in out

    def test_config_set_get(self, cli):
        cli("config", "set", "autosync.enabled", "false")
        out, _ = cli("config", "get", "autosync.enabled")
        assert out.strip() == "false"
        cli("config", "set", "editor", "nano")
        out, _ = cli("config", "get", "editor")
        assert out.strip() == "nano"

    def test_config_get_missing(self, test_config, clean_logging):
        assert _exit_code(["config", "get", "no.such.key"]) == 1

    def test_templates(self, cli, notes_root):
        out, _ = cli("templates")
        assert out.startswith("No templates found")
        templates = notes_root / ".foam" / "templates"
        templates.mkdir(parents=True)
        (templates / "daily.md").write_text("# $FOAM_TITLE\n")
        out, _ = cli("templates")
        assert out.split() == ["daily.md"]

    def test_add_from_template_without_content(self, cli, notes_root):
        templates = notes_root / ".foam" / "templates"
        templates.mkdir(parents=True)
        (templates / "daily.md").write_text("# $FOAM_TITLE\n")
        cli("add", "journal", "--template", "daily", "--title", "Today")
        assert (notes_root / "journal" / f"{TODAY}-today.md").read_text() == "# Today\n"

    def test_rebuild_and_check(self, cli, notes_root):
        cli("add", "work", "indexed")
        (notes_root / "work" / "2024-01-01-manual.md").write_text("by hand")
        out, _ = cli("check")
        assert "Status: inconsistent" in out
        assert "missing in index: work/2024-01-01-manual.md" in out

        out, _ = cli("rebuild")
        assert out.strip() == "Rebuilt search index: 2 notes indexed"
        out, _ = cli("check")
        assert "Status: consistent" in out

    def test_reindex(self, cli, notes_root):
        cli("add", "work", "x")
        out, _ = cli("reindex")
        assert "(1 books)" in out
        assert (notes_root / "README.md").is_file()
        assert (notes_root / "work" / "INDEX.md").is_file()

    def test_indexing_enabled_regenerates_after_add(self, cli, notes_root):
        cli("config", "set", "indexing.enabled", "true")
        cli("add", "work", "x")
        assert (notes_root / "work" / "INDEX.md").is_file()

    def test_sync_outside_repository_exits(self, test_config, clean_logging):
        assert _exit_code(["sync"]) == 1

    def test_no_command_prints_help(self, cli):
        out, _ = cli()
        assert "usage: mnote" in out

    def test_config_written_to_root(self, cli, notes_root):
        cli("config", "set", "autosync.git.branch", "notes")
        assert json.loads((notes_root / "config.json").read_text()) == {
            "autosync": {"git": {"branch": "notes"}}
        }
