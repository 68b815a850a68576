"""Tests for the SQLite FTS5 search index."""
import pytest

from mnote.storage.search_index import SearchIndex, build_match_query


def _remove_index_files(index: SearchIndex) -> None:
    index.close()
    for suffix in ("", "-wal", "-shm", "-journal"):
        path = index.db_path.with_name(index.db_path.name + suffix)
        if path.exists():
            path.unlink()


class TestBuildMatchQuery:
    def test_terms_become_prefix_terms(self):
        assert build_match_query("data sys") == '"data"* "sys"*'

    def test_quoted_input_passes_through(self):
        assert build_match_query('"exact phrase"') == '"exact phrase"'

    def test_whitespace_trimmed(self):
        assert build_match_query("  word  ") == '"word"*'


class TestKeywordSearch:
    def test_prefix_match(self, note_store):
        note = note_store.add_note("tech", "Database systems are fun")
        note_store.add_note("tech", "Nothing relevant")
        results = note_store.find_notes("data")
        assert [r.key for r in results] == [("tech", note.filename)]
        assert [r.key for r in note_store.find_notes("data sys")] == [("tech", note.filename)]

    def test_all_terms_required(self, note_store):
        note_store.add_note("tech", "database only")
        assert note_store.find_notes("database python") == []

    def test_phrase_query(self, note_store):
        hit = note_store.add_note("zoo", "the quick brown fox", title="one")
        note_store.add_note("zoo", "brown and quick fox", title="two")
        results = note_store.find_notes('"quick brown"')
        assert [r.filename for r in results] == [hit.filename]

    def test_results_carry_content(self, note_store):
        note_store.add_note("tech", "Content returned with results")
        (result,) = note_store.find_notes("returned")
        assert result.book == "tech"
        assert result.content == "Content returned with results"

    def test_relevance_order(self, note_store):
        weak = note_store.add_note("t", "apple banana cherry date elderberry fig grape", title="weak")
        strong = note_store.add_note("t", "apple apple apple", title="strong")
        results = note_store.find_notes("apple")
        assert [r.filename for r in results] == [strong.filename, weak.filename]

    def test_case_insensitive(self, note_store):
        note = note_store.add_note("t", "Kubernetes Cluster")
        assert [r.filename for r in note_store.find_notes("kubernetes")] == [note.filename]

    @pytest.mark.parametrize("query", ['"unbalanced', '"a" AND', '"a" OR ('])
    def test_malformed_query_returns_empty(self, note_store, query):
        note_store.add_note("t", "anything at all")
        assert note_store.find_notes(query) == []

    def test_empty_query_returns_empty(self, note_store):
        note_store.add_note("t", "anything")
        assert note_store.find_notes("") == []
        assert note_store.find_notes("   ", tag="  ") == []

    def test_book_filter_is_exact(self, note_store):
        note_store.add_note("work", "shared term")
        sub = note_store.add_note("work/sub", "shared term")
        note_store.add_note("home", "shared term")
        assert [r.key for r in note_store.find_notes("shared", book="work/sub")] == [
            ("work/sub", sub.filename)
        ]
        assert len(note_store.find_notes("shared")) == 3


class TestTagSearch:
    @pytest.fixture
    def tagged(self, note_store):
        return {
            "red": note_store.add_note("c", "first", title="r", tags=["red"]),
            "blue": note_store.add_note("c", "second", title="b", tags=["blue"]),
            "mixed": note_store.add_note("c", "third", title="rg", tags=["red", "green"]),
            "reddish": note_store.add_note("c", "fourth", title="rd", tags=["reddish"]),
        }

    def test_tag_exact_match(self, note_store, tagged):
        red = {r.filename for r in note_store.find_notes(tag="red")}
        assert red == {tagged["red"].filename, tagged["mixed"].filename}
        assert [r.filename for r in note_store.find_notes(tag="green")] == [tagged["mixed"].filename]

    def test_tag_substring_does_not_match(self, note_store, tagged):
        assert note_store.find_notes(tag="re") == []
        assert note_store.find_notes(tag="ed") == []

    def test_tag_only_results_ordered_by_filename(self, note_store, tagged):
        results = note_store.find_notes(tag="red")
        assert [r.filename for r in results] == sorted(r.filename for r in results)

    def test_keyword_and_tag(self, note_store, tagged):
        results = note_store.find_notes("third", tag="red")
        assert [r.filename for r in results] == [tagged["mixed"].filename]
        assert note_store.find_notes("first", tag="green") == []

    def test_tag_wildcards_are_literal(self, note_store, tagged):
        assert note_store.find_notes(tag="%") == []
        assert note_store.find_notes(tag="r_d") == []

    def test_tags_from_string_frontmatter(self, note_store):
        note = note_store.add_note("c", "---\ntags: alpha, beta\n---\nbody", title="s")
        assert [r.filename for r in note_store.find_notes(tag="beta")] == [note.filename]


class TestIndexLifecycle:
    def test_deleted_note_leaves_results(self, note_store):
        note_store.add_note("work", "ephemeral text")
        assert len(note_store.find_notes("ephemeral")) == 1
        note_store.delete_note("work", 1)
        assert note_store.find_notes("ephemeral") == []

    def test_missing_index_rebuilt_on_search(self, note_store, search_index):
        note = note_store.add_note("work", "survives index loss")
        _remove_index_files(search_index)
        assert not search_index.exists()

        results = note_store.find_notes("survives")
        assert [r.key for r in results] == [("work", note.filename)]
        assert search_index.exists()

    def test_index_deleted_while_open(self, note_store, search_index):
        note_store.add_note("work", "first")
        search_index.db_path.unlink()
        for suffix in ("-wal", "-shm"):
            stale = search_index.db_path.with_name(search_index.db_path.name + suffix)
            if stale.exists():
                stale.unlink()
        second = note_store.add_note("work", "second")
        assert ("work", second.filename) in search_index.keys()

    def test_reads_without_index_file(self, notes_root):
        index = SearchIndex(notes_root)
        assert index.keys() == set()
        assert index.count() == 0
        assert index.get("work", "x.md") is None
        assert not index.exists()

    def test_rebuild_resets_ids(self, note_store, search_index):
        for i in range(3):
            note_store.add_note("work", f"note {i}", title=f"n{i}")
        note_store.delete_note("work", 1)
        assert note_store.rebuild_index() == 2
        ids = sorted(search_index.get(b, f)["id"] for b, f in search_index.keys())
        assert ids == [1, 2]

    def test_rebuild_is_idempotent(self, note_store, search_index):
        note_store.add_note("a", "alpha words")
        note_store.add_note("b", "beta words", tags=["x"])
        first = (note_store.rebuild_index(), search_index.keys())
        second = (note_store.rebuild_index(), search_index.keys())
        assert first == second
        assert len(note_store.find_notes("words")) == 2
        assert len(note_store.find_notes(tag="x")) == 1

    def test_index_stores_tags_field(self, note_store, search_index):
        note = note_store.add_note("a", "body", tags=["one", "two"])
        assert search_index.get("a", note.filename)["tags"] == ",one,two,"
