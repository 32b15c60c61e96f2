# elc/arcgis.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from .config import ELC_TIMEOUT, ROUTE_ID_FIELD
from .errors import SchemaError, ServiceError

logger = logging.getLogger(__name__)


def _layer_query_url(map_server_url: str, layer_id: int) -> str:
    return f"{map_server_url.rstrip('/')}/{int(layer_id)}/query"

def operation_url(url: str, name: str) -> str:
    return f"{url.rstrip('/')}/{name}"

def _read_json(r: requests.Response) -> Any:
    r.raise_for_status()
    try:
        payload = r.json()
    except ValueError as exc:
        raise SchemaError(f"Response from {r.url} is not JSON: {exc}") from exc
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        err = payload["error"]
        raise ServiceError(
            err.get("message") or "ArcGIS service error",
            code=err.get("code"),
            details=err.get("details"),
            response=r,
        )
    return payload

def get_json(session: requests.Session, url: str, params: Optional[Dict[str, Any]] = None, timeout: float = ELC_TIMEOUT) -> Any:
    q = {"f": "json"}
    q.update(params or {})
    logger.debug("GET %s %s", url, q)
    r = session.get(url, params=q, timeout=timeout)
    return _read_json(r)

def post_form(session: requests.Session, url: str, data: Dict[str, Any], timeout: float = ELC_TIMEOUT) -> Any:
    body = {"f": "json"}
    body.update(data or {})
    logger.debug("POST %s %s", url, sorted(body))
    r = session.post(url, data=body, timeout=timeout)
    return _read_json(r)

def route_where_clause(route_id: str) -> str:
    safe = (route_id or "").replace("'", "''")
    return f"{ROUTE_ID_FIELD} = '{safe}'"

def query_route_layer(session: requests.Session, map_server_url: str, layer_id: int, route_id: str,
                      out_sr: Optional[str] = None, timeout: float = ELC_TIMEOUT) -> Any:
    params = {
        "where": route_where_clause(route_id),
        "returnGeometry": "true",
        "outSR": out_sr or "",
    }
    return get_json(session, _layer_query_url(map_server_url, layer_id), params, timeout=timeout)
