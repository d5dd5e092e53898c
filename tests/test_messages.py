"""messages module tests: HeaderMap, merge_headers, Request/Response."""
import json
import os
import sys
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from corsgate.messages import HeaderMap, Request, RequestContext, Response, merge_headers


class TestHeaderMap:
    """HeaderMap behaviour."""

    def test_case_insensitive_lookup(self):
        headers = HeaderMap({"Content-Type": "text/plain"})
        assert headers.get("content-type") == "text/plain"
        assert "CONTENT-TYPE" in headers

    def test_missing_returns_none(self):
        assert HeaderMap().get("Origin") is None
        assert HeaderMap().get("Origin", "x") == "x"

    def test_getitem_missing_raises(self):
        with pytest.raises(KeyError):
            HeaderMap()["Origin"]

    def test_init_from_pairs_keeps_order(self):
        headers = HeaderMap([("B", "2"), ("A", "1")])
        assert headers.items() == [("B", "2"), ("A", "1")]

    def test_init_from_headermap_copies(self):
        original = HeaderMap({"A": "1"})
        copy = HeaderMap(original)
        copy.set("A", "2")
        assert original.get("A") == "1"

    def test_append_joins_values(self):
        headers = HeaderMap()
        headers.append("Vary", "Origin")
        headers.append("vary", "Accept")
        assert headers.get("Vary") == "Origin, Accept"
        assert headers.items() == [("Vary", "Origin"), ("Vary", "Accept")]

    def test_set_replaces_in_place(self):
        headers = HeaderMap([("A", "1"), ("B", "2"), ("a", "3")])
        headers.set("a", "9")
        assert headers.items() == [("A", "9"), ("B", "2")]

    def test_set_new_name_appends(self):
        headers = HeaderMap({"A": "1"})
        headers["B"] = "2"
        assert headers.names() == ["A", "B"]

    def test_delete(self):
        headers = HeaderMap({"A": "1", "B": "2"})
        del headers["a"]
        assert "A" not in headers
        with pytest.raises(KeyError):
            del headers["A"]

    def test_len_and_iter_count_distinct_names(self):
        headers = HeaderMap([("A", "1"), ("a", "2"), ("B", "3")])
        assert len(headers) == 2
        assert list(headers) == ["A", "B"]

    def test_to_dict(self):
        headers = HeaderMap([("A", "1"), ("a", "2")])
        assert headers.to_dict() == {"A": "1, 2"}

    def test_values_coerced_to_str(self):
        headers = HeaderMap()
        headers.set("Content-Length", 12)
        assert headers.get("Content-Length") == "12"

    def test_copy_is_independent(self):
        headers = HeaderMap([("A", "1"), ("a", "2")])
        clone = headers.copy()
        clone.set("A", "9")
        assert headers.get_all("A") == ["1", "2"]
        assert clone.items() == [("A", "9")]


class TestMergeHeaders:
    """merge_headers(base, override)."""

    def test_override_wins_case_insensitive(self):
        merged = merge_headers({"Content-Type": "text/plain"}, {"content-type": "application/json"})
        assert merged.get("Content-Type") == "application/json"
        assert len(merged) == 1

    def test_base_order_preserved_new_names_appended(self):
        merged = merge_headers([("A", "1"), ("B", "2")], [("C", "3"), ("A", "9")])
        assert merged.items() == [("A", "9"), ("B", "2"), ("C", "3")]

    def test_accepts_all_input_forms(self):
        base = HeaderMap({"A": "1"})
        assert merge_headers(base, [("B", "2")]).get("B") == "2"
        assert merge_headers({"A": "1"}, base).get("A") == "1"

    def test_none_inputs(self):
        assert merge_headers(None, None).items() == []
        assert merge_headers(None, {"A": "1"}).get("A") == "1"
        assert merge_headers({"A": "1"}, None).get("A") == "1"

    def test_multi_valued_override_replaces_all(self):
        merged = merge_headers([("Accept", "a"), ("Accept", "b")],
                               [("Accept", "c"), ("Accept", "d")])
        assert merged.get_all("Accept") == ["c", "d"]

    def test_inputs_untouched(self):
        base = HeaderMap({"A": "1"})
        override = HeaderMap({"A": "2"})
        merge_headers(base, override)
        assert base.get("A") == "1"
        assert override.get("A") == "2"

    def test_headermap_base_is_copied(self):
        base = HeaderMap([("A", "1"), ("B", "2")])
        merged = merge_headers(base, {"B": "3"})
        assert merged is not base
        assert merged.items() == [("A", "1"), ("B", "3")]
        assert base.items() == [("A", "1"), ("B", "2")]


class TestMessages:
    """Request / Response / RequestContext dataclasses."""

    def test_response_defaults(self):
        response = Response()
        assert response.status == 200
        assert response.headers.items() == []
        assert response.body is None

    def test_plain_dict_headers_converted(self):
        request = Request(method="GET", headers={"Origin": "http://a.com"})
        assert isinstance(request.headers, HeaderMap)
        assert request.headers.get("origin") == "http://a.com"

    def test_response_json(self):
        response = Response.json({"ok": True, "name": "héllo"}, status=201)
        assert response.status == 201
        assert response.headers.get("Content-Type").startswith("application/json")
        assert json.loads(response.body.decode("utf-8")) == {"ok": True, "name": "héllo"}

    def test_context_response_optional(self):
        ctx = RequestContext(request=Request(), next=lambda c: Response())
        assert ctx.response is None
