"""Helpers for inspecting inbound HTTP requests"""

from typing import Any, Dict

from starlette.requests import Request

UNKNOWN_IP = "unknown"


def get_client_ip(request: Request) -> str:
    """Best guess at the caller's IP address.

    First non-empty wins: X-Forwarded-For (first entry), X-Real-IP, the
    peer address reported by the ASGI server, the raw ``client`` tuple
    from the scope, then ``"unknown"``.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0]
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    if request.client and request.client.host:
        return request.client.host

    # Some servers put a bare (host, port) list here that Starlette won't wrap
    raw_client = request.scope.get("client")
    if raw_client and raw_client[0]:
        return str(raw_client[0])

    return UNKNOWN_IP


def collect_headers(request: Request) -> Dict[str, str]:
    """Request headers as a plain dict; repeated headers are joined with ", " """
    return {key: ", ".join(request.headers.getlist(key)) for key in request.headers.keys()}


def enrich_message(body: Dict[str, Any], client_ip: str, headers: Dict[str, str]) -> Dict[str, Any]:
    """Copy of a JSON-RPC message with caller metadata under ``params._meta``"""
    params = body.get("params") or {}
    if not isinstance(params, dict):
        return dict(body)

    enriched_params = dict(params)
    existing_meta = params.get("_meta")
    # Client-supplied keys such as progressToken survive; ip/headers always win
    enriched_params["_meta"] = {
        **(existing_meta if isinstance(existing_meta, dict) else {}),
        "ip": client_ip,
        "headers": headers,
    }
    return {**body, "params": enriched_params}
