"""Tests for hydration (flight payload reassembly and tree walk)."""

import pytest

from errors import MalformedPayload
from hydration import find_data_array, parse_rows, push_chunks, reassemble


class TestPushChunks:
    def test_collects_type_1_chunks_in_order(self, counters_html: str) -> None:
        chunks = push_chunks(counters_html)
        assert len(chunks) == 3
        assert chunks[0].startswith("0:")
        assert "".join(chunks).count("\n") == 7

    def test_ignores_unrelated_scripts(self) -> None:
        html = "<html><script>var x = 1;</script><script>self.__next_f.push([2,null])</script></html>"
        assert push_chunks(html) == []


class TestParseRows:
    def test_json_and_tagged_rows(self) -> None:
        tree = parse_rows('0:{"a":"$1"}\n1:[1,2]\n2:I["chunk","default"]\n3:HL["/style.css","style"]\n')
        assert tree.rows == {"0": {"a": "$1"}, "1": [1, 2]}
        assert tree.tagged["2"] == ("I", '["chunk","default"]')
        assert tree.tagged["3"][0] == "HL"

    def test_text_row_length_is_utf8_bytes(self) -> None:
        tree = parse_rows('5:T6,héllo6:{"after":true}\n')
        assert tree.rows["5"] == "héllo"
        assert tree.rows["6"] == {"after": True}

    def test_text_row_may_contain_newlines(self) -> None:
        tree = parse_rows('1:T5,a\nb\nc2:null\n')
        assert tree.rows["1"] == "a\nb\nc"
        assert tree.rows["2"] is None

    def test_truncated_tail_is_skipped(self) -> None:
        tree = parse_rows('0:{"ok":1}\n1:{"cut":')
        assert tree.rows == {"0": {"ok": 1}}
        assert tree.skipped == 1

    def test_garbage_line_is_skipped(self) -> None:
        tree = parse_rows('not a row\n0:{"ok":1}\n')
        assert tree.rows == {"0": {"ok": 1}}


class TestResolution:
    def test_references_are_followed(self) -> None:
        tree = parse_rows('0:{"page":"$1","lazy":"$L2","promise":"$@2"}\n1:{"items":["$2"]}\n2:{"v":3}\n')
        assert tree.root == {"page": {"items": [{"v": 3}]}, "lazy": {"v": 3}, "promise": {"v": 3}}

    def test_escaped_dollar_and_specials(self) -> None:
        tree = parse_rows('0:["$","div","$$5","$undefined","$Sreact.suspense"]\n')
        assert tree.root == ["$", "div", "$5", None, "$Sreact.suspense"]

    def test_reference_with_path(self) -> None:
        tree = parse_rows('0:{"x":"$1:props:items:1"}\n1:{"props":{"items":["a","b"]}}\n')
        assert tree.root == {"x": "b"}

    def test_cycles_and_dangling_refs_become_none(self) -> None:
        tree = parse_rows('0:{"self":"$1","missing":"$ff"}\n1:{"back":"$1"}\n')
        assert tree.root == {"self": {"back": None}, "missing": None}


class TestFindDataArray:
    def test_finds_matching_table_past_decoys(self, counters_html: str) -> None:
        tree = reassemble(counters_html)
        rows = find_data_array(tree, lambda r: "win_rate" in r)
        assert rows is not None
        assert [r["champion"]["key"] for r in rows] == ["fizz", "syndra", "kassadin"]

    def test_returns_none_when_absent(self, counters_no_table_html: str) -> None:
        tree = reassemble(counters_no_table_html)
        assert find_data_array(tree, lambda r: "win_rate" in r) is None

    def test_rows_unreachable_from_root_are_searched(self) -> None:
        tree = parse_rows('0:{"shell":true}\n7:{"data":[{"win_rate":0.5}]}\n')
        assert find_data_array(tree, lambda r: "win_rate" in r) == [{"win_rate": 0.5}]

    def test_depth_limit(self) -> None:
        tree = parse_rows('0:{"a":{"b":{"c":{"data":[{"win_rate":0.5}]}}}}\n')
        assert find_data_array(tree, lambda r: True, max_depth=2) is None
        assert find_data_array(tree, lambda r: True, max_depth=5) is not None


class TestReassemble:
    def test_page_without_payload(self) -> None:
        with pytest.raises(MalformedPayload):
            reassemble("<html><body><p>Access denied</p></body></html>")

    def test_payload_without_rows(self, make_flight_page) -> None:
        with pytest.raises(MalformedPayload):
            reassemble(make_flight_page("nothing to see here"))

    def test_chunk_boundaries_do_not_matter(self, make_flight_page) -> None:
        stream = '0:{"t":"$1"}\n1:{"data":[{"win_rate":0.51,"champion":{"key":"ahri"}}]}\n'
        for pieces in (1, 2, 7, 30):
            tree = reassemble(make_flight_page(stream, pieces))
            assert tree.root == {"t": {"data": [{"win_rate": 0.51, "champion": {"key": "ahri"}}]}}
