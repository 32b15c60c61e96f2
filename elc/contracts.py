# elc/contracts.py
"""
Data contracts exchanged with the ELC REST SOE.

Wire names are the service's PascalCase names; Python attributes are
snake_case and either can be used when constructing a contract.
"""
from __future__ import annotations

import datetime as dt
from enum import IntEnum, IntFlag
from functools import total_ordering
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer, field_validator

from .geometry import Geometry, PointContract, PolylineContract, geometry_from_json
from .routes import get_rrq_description, get_rrt_description, parse_route_id

WIRE_DATE_FORMAT = "%m/%d/%Y"
_DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d",
)


class LrsTypes(IntFlag):
    """LRS layers a route appears in."""

    NONE = 0
    INCREASE = 1
    DECREASE = 2
    BOTH = INCREASE | DECREASE
    RAMP = 4


class RouteType(IntEnum):
    SR = 0   # State Route
    IS = 1   # Interstate
    US = 2   # US Route
    RA = 3   # Ramp
    LC = 4   # Local access approach (LX), frontage roads (FD, FI)
    FT = 5   # Ferry terminal
    PR = 6   # Proposed route
    CN = 7   # Connector
    TB = 8   # Turnback


def lrs_types_name(value: LrsTypes) -> str:
    value = LrsTypes(value)
    for member in (LrsTypes.NONE, LrsTypes.INCREASE, LrsTypes.DECREASE, LrsTypes.BOTH, LrsTypes.RAMP):
        if value == member:
            return member.name.title()
    return ", ".join(m.name.title() for m in (LrsTypes.INCREASE, LrsTypes.DECREASE, LrsTypes.RAMP) if m in value)


# ── Dates
def parse_wire_date(value: Any) -> Optional[dt.date]:
    """Lenient date parsing; anything unparseable becomes None."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return dt.datetime.fromisoformat(text).date()
    except ValueError:
        return None


def wire_date(value: Optional[dt.date]) -> Optional[str]:
    """Short-date wire string for a date, or None."""
    if value is None or value <= dt.date.min:
        return None
    return value.strftime(WIRE_DATE_FORMAT)


# ── Routes
@total_ordering
class RouteInfo(BaseModel):
    """A route and the LRS layers it appears in.

    ``sr``, ``rrt`` and ``rrq`` are always derived from ``name``; they are None
    when the name is missing or is not a valid state route identifier.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    name: Optional[str] = Field(default=None, alias="Name")
    lrs_types: LrsTypes = Field(default=LrsTypes.NONE, alias="LrsTypes")
    route_type: RouteType = Field(default=RouteType.SR, alias="RouteType")

    @field_validator("lrs_types", mode="before")
    @classmethod
    def _lrs_flags(cls, value):
        return LrsTypes(int(value))

    @computed_field(alias="SR")
    @property
    def sr(self) -> Optional[str]:
        parsed = parse_route_id(self.name)
        return parsed.sr if parsed.ok else None

    @computed_field(alias="RRT")
    @property
    def rrt(self) -> Optional[str]:
        parsed = parse_route_id(self.name)
        return parsed.rrt if parsed.ok else None

    @computed_field(alias="RRQ")
    @property
    def rrq(self) -> Optional[str]:
        parsed = parse_route_id(self.name)
        return parsed.rrq if parsed.ok else None

    @property
    def has_valid_name(self) -> bool:
        return parse_route_id(self.name).ok

    @property
    def rrt_description(self) -> Optional[str]:
        return get_rrt_description(self.rrt) if self.has_valid_name else None

    @property
    def rrq_description(self) -> Optional[str]:
        return get_rrq_description(self) if self.has_valid_name else None

    def _key(self):
        return (self.name.lower() if self.name is not None else None, int(self.lrs_types))

    def __eq__(self, other):
        if not isinstance(other, RouteInfo):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other):
        if not isinstance(other, RouteInfo):
            return NotImplemented
        mine, theirs = self._key(), other._key()
        if mine[0] != theirs[0]:
            if mine[0] is None:
                return True
            if theirs[0] is None:
                return False
            return mine[0] < theirs[0]
        return mine[1] < theirs[1]

    def __hash__(self):
        return hash(self._key())

    def __str__(self) -> str:
        return f"{self.name if self.name is not None else 'Null'}:{lrs_types_name(self.lrs_types)}"


# ── Route locations
class RouteLocation(BaseModel):
    """A point or segment on a state route, as sent to and returned by ArmCalc."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[int] = Field(default=None, alias="Id")
    route: Optional[str] = Field(default=None, alias="Route")
    arm: Optional[float] = Field(default=None, alias="Arm")
    srmp: Optional[float] = Field(default=None, alias="Srmp")
    back: Optional[bool] = Field(default=None, alias="Back")
    decrease: Optional[bool] = Field(default=None, alias="Decrease")  # ignored for ramps
    reference_date: Optional[dt.date] = Field(default=None, alias="ReferenceDate")
    response_date: Optional[dt.date] = Field(default=None, alias="ResponseDate")
    end_arm: Optional[float] = Field(default=None, alias="EndArm")
    end_srmp: Optional[float] = Field(default=None, alias="EndSrmp")
    end_back: Optional[bool] = Field(default=None, alias="EndBack")
    end_reference_date: Optional[dt.date] = Field(default=None, alias="EndReferenceDate")
    end_response_date: Optional[dt.date] = Field(default=None, alias="EndResponseDate")
    realignment_date: Optional[dt.date] = Field(default=None, alias="RealignmentDate")
    end_realign_date: Optional[dt.date] = Field(default=None, alias="EndRealignDate")
    arm_calc_return_code: Optional[int] = Field(default=None, alias="ArmCalcReturnCode")
    arm_calc_end_return_code: Optional[int] = Field(default=None, alias="ArmCalcEndReturnCode")
    arm_calc_return_message: Optional[str] = Field(default=None, alias="ArmCalcReturnMessage")
    arm_calc_end_return_message: Optional[str] = Field(default=None, alias="ArmCalcEndReturnMessage")
    locating_error: Optional[str] = Field(default=None, alias="LocatingError")
    route_geometry: Optional[Geometry] = Field(default=None, alias="RouteGeometry")
    event_point: Optional[PointContract] = Field(default=None, alias="EventPoint")
    distance: Optional[float] = Field(default=None, alias="Distance")
    angle: Optional[float] = Field(default=None, alias="Angle")

    @field_validator(
        "reference_date", "response_date", "end_reference_date",
        "end_response_date", "realignment_date", "end_realign_date",
        mode="before",
    )
    @classmethod
    def _lenient_date(cls, value):
        return parse_wire_date(value)

    @field_validator("route_geometry", mode="before")
    @classmethod
    def _classify_geometry(cls, value):
        if value is None:
            return None
        return geometry_from_json(value)

    @field_serializer(
        "reference_date", "response_date", "end_reference_date",
        "end_response_date", "realignment_date", "end_realign_date",
        when_used="json-unless-none",
    )
    def _short_date(self, value: dt.date):
        return wire_date(value)

    @property
    def is_line(self) -> bool:
        return self.end_arm is not None or self.end_srmp is not None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "RouteLocation":
        return cls.model_validate(data)


class RouteLocationSet(BaseModel):
    """Increase, Decrease and Ramp candidates located near the same input point."""

    model_config = ConfigDict(populate_by_name=True)

    increase: Optional[RouteLocation] = Field(default=None, alias="Increase")
    decrease: Optional[RouteLocation] = Field(default=None, alias="Decrease")
    ramp: Optional[RouteLocation] = Field(default=None, alias="Ramp")

    def location_with_shortest_offset(self) -> Optional[RouteLocation]:
        """The candidate with the smallest absolute distance; candidates with a distance beat those without."""
        output = None
        for loc in (self.increase, self.decrease, self.ramp):
            if loc is None:
                continue
            if output is None:
                output = loc
            elif loc.distance is not None and output.distance is not None:
                if abs(loc.distance) < abs(output.distance):
                    output = loc
            elif loc.distance is not None:
                output = loc
        return output


# ── Map service metadata
class LayerInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    name: str = ""
    parent_layer_id: int = Field(default=-1, alias="parentLayerId")
    sub_layer_ids: Optional[List[int]] = Field(default=None, alias="subLayerIds")


class MapServerInfo(BaseModel):
    """Subset of the ArcGIS map service resource: the layer tree."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    layers: List[LayerInfo] = Field(default_factory=list)

    def find_lrs_year_layer(self, lrs_year: Optional[str] = None) -> LayerInfo:
        """The group layer for ``lrs_year``, or the first root layer when no year is given."""
        for layer in self.layers:
            if lrs_year and layer.name == lrs_year:
                return layer
            if not lrs_year and layer.parent_layer_id == -1:
                return layer
        raise LookupError(f"No LRS layer found for year {lrs_year!r}")

    def sublayers(self, parent_id: int) -> List[LayerInfo]:
        return [layer for layer in self.layers if layer.parent_layer_id == parent_id]

    def lrs_layer_ids(self, lrs_year: Optional[str] = None) -> Dict[LrsTypes, int]:
        parent = self.find_lrs_year_layer(lrs_year)
        out: Dict[LrsTypes, int] = {}
        for lrs_type in (LrsTypes.INCREASE, LrsTypes.DECREASE, LrsTypes.RAMP):
            for layer in self.sublayers(parent.id):
                if layer.name.lower() == lrs_type.name.lower():
                    out[lrs_type] = layer.id
                    break
        return out


class RouteLayerQueryFeature(BaseModel):
    model_config = ConfigDict(extra="ignore")

    attributes: Dict[str, Any] = Field(default_factory=dict)
    geometry: Optional[PolylineContract] = None


class RouteLayerQueryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    features: List[RouteLayerQueryFeature] = Field(default_factory=list)


# ── Flattening route locations into attribute records
ROUTE_LOCATION_RECORD_FIELDS = (
    "Id", "Route", "Arm", "Srmp", "Back", "Decrease", "ReferenceDate", "ResponseDate",
    "EndArm", "EndSrmp", "EndBack", "EndReferenceDate", "EndResponseDate",
    "RealignmentDate", "EndRealignDate", "ArmCalcReturnCode", "ArmCalcEndReturnCode",
    "ArmCalcReturnMessage", "ArmCalcEndReturnMessage", "LocatingError",
    "RouteGeometry", "EventPoint", "Distance", "Angle", "IsLine",
)


def route_location_record(location: RouteLocation) -> Dict[str, Any]:
    """Flatten a RouteLocation into a dict keyed by wire name; dates and geometries stay objects."""
    return {
        "Id": location.id,
        "Route": location.route,
        "Arm": location.arm,
        "Srmp": location.srmp,
        "Back": location.back,
        "Decrease": location.decrease,
        "ReferenceDate": location.reference_date,
        "ResponseDate": location.response_date,
        "EndArm": location.end_arm,
        "EndSrmp": location.end_srmp,
        "EndBack": location.end_back,
        "EndReferenceDate": location.end_reference_date,
        "EndResponseDate": location.end_response_date,
        "RealignmentDate": location.realignment_date,
        "EndRealignDate": location.end_realign_date,
        "ArmCalcReturnCode": location.arm_calc_return_code,
        "ArmCalcEndReturnCode": location.arm_calc_end_return_code,
        "ArmCalcReturnMessage": location.arm_calc_return_message,
        "ArmCalcEndReturnMessage": location.arm_calc_end_return_message,
        "LocatingError": location.locating_error,
        "RouteGeometry": location.route_geometry,
        "EventPoint": location.event_point,
        "Distance": location.distance,
        "Angle": location.angle,
        "IsLine": location.is_line,
    }


def create_unique_key(mapping: MutableMapping[str, Any], key: str) -> str:
    """Return ``key``, or ``key0:``, ``key1:``, ... if it is already taken."""
    if key is None:
        raise ValueError("key is required")
    out = key
    i = 0
    while out in mapping:
        out = f"{key}{i}:"
        i += 1
    return out


def add_route_location_data(records: Sequence[MutableMapping[str, Any]], locations: Sequence[RouteLocation]) -> None:
    """Merge route location fields into attribute records.

    Records and locations are paired by position when the lengths match;
    otherwise a record at index ``i`` gets the location whose ``id`` is ``i``.
    """
    same_length = len(records) == len(locations)
    by_id = {} if same_length else {loc.id: loc for loc in locations if loc.id is not None}
    for i, record in enumerate(records):
        loc = locations[i] if same_length else by_id.get(i)
        if loc is None:
            continue
        for key, value in route_location_record(loc).items():
            record[create_unique_key(record, key)] = value


def route_list_document(route_infos: Iterable[RouteInfo]) -> Dict[str, Dict[str, str]]:
    """Describe routes as ``{name: {"direction": ..., "routeType": ...}}``; direction is omitted for NONE."""
    out: Dict[str, Dict[str, str]] = {}
    for ri in route_infos:
        entry: Dict[str, str] = {}
        if ri.lrs_types != LrsTypes.NONE:
            entry["direction"] = lrs_types_name(ri.lrs_types)
        entry["routeType"] = ri.route_type.name
        out[ri.name] = entry
    return out
