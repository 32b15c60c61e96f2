# elc/client.py
"""
Client for the WSDOT Enterprise Location Class (ELC) REST SOE.

Example::

    client = ElcClient()
    routes = client.list_routes()["Current"]
    located = client.find_route_locations(
        [RouteLocation(route="005", arm=10.0)], reference_date=date(2020, 1, 1), out_sr=4326
    )
"""
from __future__ import annotations

import datetime as dt
import json
import logging
import re
from collections.abc import Sequence as SequenceABC
from numbers import Number
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import requests
from pydantic import TypeAdapter, ValidationError

from .arcgis import get_json, operation_url, post_form, query_route_layer
from .config import (
    DEFAULT_FIND_NEAREST_ROUTE_LOCATIONS_OPERATION,
    DEFAULT_FIND_ROUTE_LOCATIONS_OPERATION,
    DEFAULT_LRS_YEAR,
    DEFAULT_ROUTES_RESOURCE,
    DEFAULT_URL,
    ELC_TIMEOUT,
    MAP_SERVICE_URL_PATTERN,
    ElcSettings,
)
from .contracts import (
    LayerInfo,
    LrsTypes,
    MapServerInfo,
    RouteInfo,
    RouteLayerQueryResponse,
    RouteLocation,
    wire_date,
)
from .errors import ConfigurationError, SchemaError
from .geometry import PolylineContract

logger = logging.getLogger(__name__)

SpatialReference = Union[int, str]

_ROUTE_LIST = TypeAdapter(Dict[str, Dict[str, int]])
_ROUTE_LOCATIONS = TypeAdapter(List[RouteLocation])
_MAP_SERVICE_URL_RE = re.compile(MAP_SERVICE_URL_PATTERN)


def _as_date(value) -> Optional[dt.date]:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    return value

def _sr_param(value: Optional[SpatialReference]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise TypeError("Spatial reference must be a WKID int or a WKT string.")
    return str(value)

def flatten_coordinates(coordinates: Iterable) -> List[float]:
    """Turn ``[[x, y], ...]`` or ``[x, y, ...]`` into ``[x0, y0, x1, y1, ...]``.

    Only the first two values of each pair are used, so z/m values are dropped.
    """
    out: List[float] = []
    for item in coordinates:
        if isinstance(item, Number):
            out.append(float(item))
        elif isinstance(item, SequenceABC) and not isinstance(item, str):
            if len(item) < 2:
                raise ValueError(f"Coordinate pair needs at least two values: {item!r}")
            out.extend(float(v) for v in item[:2])
        else:
            raise TypeError(f"Unsupported coordinate value: {item!r}")
    if len(out) % 2:
        raise ValueError("Coordinates must contain an even number of values (x, y pairs).")
    return out


class ElcClient:
    """Wraps the ELC REST SOE operations.

    Each instance owns its configuration, its ``requests.Session`` and two
    lazily-filled caches (the route list and the map service layer tree).
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        find_route_locations_operation: str = DEFAULT_FIND_ROUTE_LOCATIONS_OPERATION,
        find_nearest_route_locations_operation: str = DEFAULT_FIND_NEAREST_ROUTE_LOCATIONS_OPERATION,
        routes_resource: str = DEFAULT_ROUTES_RESOURCE,
        session: Optional[requests.Session] = None,
        timeout: float = ELC_TIMEOUT,
    ):
        self.url = (url or DEFAULT_URL).rstrip("/")
        m = _MAP_SERVICE_URL_RE.match(self.url)
        if not m:
            raise ConfigurationError(f"Cannot find the map service in {self.url!r}: expected '<map service>/exts/<extension>'.")
        self.map_server_url = m.group(1)
        self.find_route_locations_operation = find_route_locations_operation or DEFAULT_FIND_ROUTE_LOCATIONS_OPERATION
        self.find_nearest_route_locations_operation = (
            find_nearest_route_locations_operation or DEFAULT_FIND_NEAREST_ROUTE_LOCATIONS_OPERATION
        )
        self.routes_resource = routes_resource or DEFAULT_ROUTES_RESOURCE
        self.session = session or requests.Session()
        self.timeout = timeout
        self._routes: Optional[Dict[str, List[RouteInfo]]] = None
        self._map_server_info: Optional[MapServerInfo] = None

    @classmethod
    def from_settings(cls, settings: ElcSettings, **kwargs) -> "ElcClient":
        return cls(
            settings.url,
            settings.find_route_locations_operation,
            settings.find_nearest_route_locations_operation,
            settings.routes_resource,
            **kwargs,
        )

    @property
    def settings(self) -> ElcSettings:
        return ElcSettings(
            self.url,
            self.find_route_locations_operation,
            self.find_nearest_route_locations_operation,
            self.routes_resource,
        )

    def __repr__(self) -> str:
        return f"ElcClient({self.url!r})"

    # ── routes
    def list_routes(self) -> Dict[str, List[RouteInfo]]:
        """Routes keyed by LRS year (the group layer names in the map service).

        Fetched once per client and then served from memory.
        """
        routes = self._routes
        if routes is None:
            payload = get_json(self.session, operation_url(self.url, self.routes_resource), timeout=self.timeout)
            routes = self._parse_route_list(payload)
            self._routes = routes
            logger.info("Loaded %d LRS year(s) of routes from %s", len(routes), self.url)
        return routes

    @property
    def routes(self) -> Dict[str, List[RouteInfo]]:
        return self.list_routes()

    @staticmethod
    def _parse_route_list(payload: Any) -> Dict[str, List[RouteInfo]]:
        try:
            raw = _ROUTE_LIST.validate_python(payload, strict=True)
        except ValidationError as exc:
            raise SchemaError(f"Unexpected route list structure: {exc}") from exc
        return {
            year: [RouteInfo(name=code, lrs_types=LrsTypes(bits)) for code, bits in by_code.items()]
            for year, by_code in raw.items()
        }

    # ── map service
    @property
    def map_server_info(self) -> MapServerInfo:
        info = self._map_server_info
        if info is None:
            payload = get_json(self.session, self.map_server_url, timeout=self.timeout)
            try:
                info = MapServerInfo.model_validate(payload)
            except ValidationError as exc:
                raise SchemaError(f"Unexpected map service description: {exc}") from exc
            self._map_server_info = info
            logger.info("Loaded %d layer(s) from %s", len(info.layers), self.map_server_url)
        return info

    @property
    def layers(self) -> List[LayerInfo]:
        return self.map_server_info.layers

    # ── operations
    def find_route_locations(
        self,
        locations: Sequence[RouteLocation],
        reference_date: Optional[dt.date] = None,
        out_sr: Optional[SpatialReference] = None,
        lrs_year: Optional[str] = None,
    ) -> List[RouteLocation]:
        """Locate route locations (route + measures) on the LRS.

        ``reference_date`` may be omitted only when every location carries its
        own; otherwise the service reports a per-location ``locating_error``.
        ``out_sr`` is a WKID int or a WKT string. One result is returned per
        input location, in input order; failures carry ``locating_error``.
        """
        locations = list(locations)
        data = {
            "locations": json.dumps([loc.to_wire() for loc in locations]),
            "referenceDate": wire_date(_as_date(reference_date)) or "",
        }
        out_sr_param = _sr_param(out_sr)
        if out_sr_param is not None:
            data["outSR"] = out_sr_param
        if lrs_year:
            data["lrsYear"] = lrs_year
        payload = post_form(self.session, operation_url(self.url, self.find_route_locations_operation), data, timeout=self.timeout)
        results = self._parse_route_locations(payload)
        if len(results) != len(locations):
            raise SchemaError(f"Expected {len(locations)} route location(s) but the service returned {len(results)}.")
        return results

    def find_nearest_route_locations(
        self,
        coordinates: Iterable,
        reference_date: dt.date,
        search_radius: float,
        in_sr: Optional[SpatialReference],
        out_sr: Optional[SpatialReference],
        lrs_year: Optional[str] = None,
        route_filter: Optional[str] = None,
    ) -> List[RouteLocation]:
        """Find the route locations nearest to a set of points.

        ``coordinates`` is either ``[x0, y0, x1, y1, ...]`` or a sequence of
        pairs. ``search_radius`` is in feet. ``route_filter`` is a partial SQL
        clause such as ``LIKE '005%'`` and is sent as-is.

        Points with no route within the radius get no result, so the output may
        be shorter than the input; match results to inputs with ``RouteLocation.id``.
        """
        flat = flatten_coordinates(coordinates)
        data = {
            "coordinates": json.dumps(flat),
            "referenceDate": wire_date(_as_date(reference_date)) or "",
            "searchRadius": str(float(search_radius)),
        }
        for key, value in (("inSR", _sr_param(in_sr)), ("outSR", _sr_param(out_sr))):
            if value is not None:
                data[key] = value
        if lrs_year:
            data["lrsYear"] = lrs_year
        if route_filter:
            data["routeFilter"] = route_filter
        payload = post_form(
            self.session, operation_url(self.url, self.find_nearest_route_locations_operation), data, timeout=self.timeout
        )
        results = self._parse_route_locations(payload)
        if len(results) > len(flat) // 2:
            raise SchemaError(f"Expected at most {len(flat) // 2} route location(s) but the service returned {len(results)}.")
        return results

    @staticmethod
    def _parse_route_locations(payload: Any) -> List[RouteLocation]:
        if not isinstance(payload, list):
            raise SchemaError(f"Expected a JSON array of route locations, got {type(payload).__name__}.")
        try:
            return _ROUTE_LOCATIONS.validate_python(payload)
        except ValidationError as exc:
            raise SchemaError(f"Invalid route location in response: {exc}") from exc

    def find_route(
        self,
        route_info: RouteInfo,
        lrs_year: Optional[str] = DEFAULT_LRS_YEAR,
        out_sr: Optional[SpatialReference] = None,
    ) -> Optional[Dict[LrsTypes, PolylineContract]]:
        """Route geometry per LRS type flagged on ``route_info``.

        ``lrs_year`` names the LRS group layer; when empty the first root layer
        is used. Returns None when no layer has a feature for the route.
        """
        out_sr_param = _sr_param(out_sr)
        layer_ids = self.map_server_info.lrs_layer_ids(lrs_year)
        output: Dict[LrsTypes, PolylineContract] = {}
        for lrs_type in (LrsTypes.INCREASE, LrsTypes.DECREASE, LrsTypes.RAMP):
            if lrs_type not in route_info.lrs_types or lrs_type not in layer_ids:
                continue
            payload = query_route_layer(
                self.session, self.map_server_url, layer_ids[lrs_type], route_info.name, out_sr_param, timeout=self.timeout
            )
            try:
                response = RouteLayerQueryResponse.model_validate(payload)
            except ValidationError as exc:
                raise SchemaError(f"Unexpected route layer query response: {exc}") from exc
            if response.features and response.features[0].geometry is not None:
                output[lrs_type] = response.features[0].geometry
        return output or None
