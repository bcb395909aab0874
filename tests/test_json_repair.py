"""Tests for model JSON cleanup."""

from dialogue_memory.json_repair import parse_json, sanitize_json, trim_broken_array_tail


class TestSanitize:
    def test_strips_fences_and_prose(self):
        raw = 'Here you go:\n```json\n{"a": 1}\n```\nHope it helps'
        assert sanitize_json(raw) == '{"a": 1}'

    def test_glued_arrays_merged(self):
        assert parse_json("[1, 2][3]") == [1, 2, 3]

    def test_glued_objects_separated(self):
        assert parse_json('[{"a": 1}{"a": 2}]') == [{"a": 1}, {"a": 2}]

    def test_object_wrapping_array_unwrapped(self):
        assert parse_json('{[{"a": 1}]}') == [{"a": 1}]

    def test_single_object_wrapped_when_list_expected(self):
        assert parse_json('{"a": 1}', expect_list=True) == [{"a": 1}]

    def test_no_json(self):
        assert sanitize_json("no brackets here") == ""
        assert parse_json("") is None


class TestTruncation:
    def test_incomplete_tail_dropped(self):
        raw = '[{"a": 1}, {"a": 2}, {"a": "unfinis'
        assert parse_json(raw, expect_list=True) == [{"a": 1}, {"a": 2}]

    def test_braces_inside_strings_ignored(self):
        raw = '[{"a": "}"}, {"b": '
        assert trim_broken_array_tail(raw) == '[{"a": "}"}]'

    def test_nothing_complete(self):
        assert trim_broken_array_tail('[{"a": ') == "[]"

    def test_complete_array_unchanged(self):
        assert trim_broken_array_tail("[1, 2]") == "[1, 2]"


def test_unparseable_returns_none():
    assert parse_json("{not: valid}") is None
