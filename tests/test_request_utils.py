"""
Tests for caller IP resolution and message enrichment
"""

import pytest
from pathlib import Path
from starlette.requests import Request

import sys
sys.path.append(str(Path(__file__).parent.parent))

from request_utils import collect_headers, enrich_message, get_client_ip


def make_request(headers=None, client=("198.51.100.7", 4321)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/messages",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestGetClientIp:

    def test_forwarded_for_first_entry(self):
        request = make_request({"X-Forwarded-For": "203.0.113.1, 10.0.0.2, 10.0.0.3"})
        assert get_client_ip(request) == "203.0.113.1"

    def test_forwarded_for_is_split_not_trimmed(self):
        request = make_request({"X-Forwarded-For": "203.0.113.1 ,10.0.0.2"})
        assert get_client_ip(request) == "203.0.113.1 "

    def test_forwarded_for_beats_real_ip(self):
        request = make_request({"X-Forwarded-For": "203.0.113.1", "X-Real-IP": "192.0.2.44"})
        assert get_client_ip(request) == "203.0.113.1"

    def test_empty_first_entry_falls_through(self):
        request = make_request({"X-Forwarded-For": ",10.0.0.2", "X-Real-IP": "192.0.2.44"})
        assert get_client_ip(request) == "192.0.2.44"

    def test_real_ip(self):
        request = make_request({"X-Real-IP": "192.0.2.44"})
        assert get_client_ip(request) == "192.0.2.44"

    def test_peer_address(self):
        assert get_client_ip(make_request()) == "198.51.100.7"

    def test_unknown(self):
        assert get_client_ip(make_request(client=None)) == "unknown"


class TestCollectHeaders:

    def test_repeated_header_joined(self):
        request = Request({
            "type": "http",
            "method": "POST",
            "path": "/messages",
            "query_string": b"",
            "headers": [(b"accept", b"text/plain"), (b"x-trace", b"a"), (b"x-trace", b"b")],
        })
        assert collect_headers(request) == {"accept": "text/plain", "x-trace": "a, b"}

    def test_keys_lower_cased(self):
        assert collect_headers(make_request({"X-Real-IP": "192.0.2.44"})) == {"x-real-ip": "192.0.2.44"}


class TestEnrichMessage:

    def test_adds_meta_and_keeps_params(self):
        body = {"jsonrpc": "2.0", "id": 3, "method": "tools/call",
                "params": {"name": "upscale_fast", "arguments": {"image_file_uri": "file:///tmp/x.png"}}}
        enriched = enrich_message(body, "203.0.113.1", {"host": "localhost"})
        assert enriched["id"] == 3
        assert enriched["method"] == "tools/call"
        assert enriched["params"]["name"] == "upscale_fast"
        assert enriched["params"]["arguments"] == {"image_file_uri": "file:///tmp/x.png"}
        assert enriched["params"]["_meta"] == {"ip": "203.0.113.1", "headers": {"host": "localhost"}}

    def test_original_body_untouched(self):
        body = {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {"a": 1}}
        enrich_message(body, "203.0.113.1", {})
        assert body == {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {"a": 1}}

    def test_missing_params(self):
        enriched = enrich_message({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}, "1.2.3.4", {})
        assert enriched["params"] == {"_meta": {"ip": "1.2.3.4", "headers": {}}}

    def test_existing_meta_keys_survive(self):
        body = {"method": "tools/call", "params": {"_meta": {"progressToken": 5, "ip": "spoofed"}}}
        meta = enrich_message(body, "1.2.3.4", {})["params"]["_meta"]
        assert meta["progressToken"] == 5
        assert meta["ip"] == "1.2.3.4"

    def test_non_object_params_left_alone(self):
        body = {"method": "legacy", "params": [1, 2]}
        assert enrich_message(body, "1.2.3.4", {}) == body


if __name__ == "__main__":
    pytest.main([__file__])
