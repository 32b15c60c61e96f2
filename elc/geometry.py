# elc/geometry.py
"""
ESRI JSON geometry contracts.

The service returns geometry as untagged ESRI JSON objects, so the variant is
decided by which fields are present (see ``geometry_from_json``).
"""
from __future__ import annotations

import json
from abc import abstractmethod
from enum import Enum
from numbers import Number
from typing import Any, ClassVar, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from shapely.geometry import LineString, MultiLineString, MultiPoint, MultiPolygon, Point, Polygon, box

from .errors import SchemaError

Coordinates = List[float]
Path = List[Coordinates]


class GeometryType(str, Enum):
    POINT = "Point"
    MULTIPOINT = "Multipoint"
    POLYLINE = "Polyline"
    POLYGON = "Polygon"
    ENVELOPE = "Envelope"


class SpatialReferenceContract(BaseModel):
    model_config = ConfigDict(extra="ignore")

    wkid: Optional[int] = None
    wkt: Optional[str] = None

    def __str__(self) -> str:
        if self.wkid is not None:
            return json.dumps({"wkid": self.wkid})
        return json.dumps({"wkt": self.wkt})


class GeometryContract(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    geometry_type: ClassVar[GeometryType]

    spatial_reference: Optional[SpatialReferenceContract] = Field(default=None, alias="spatialReference")

    def to_esri_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def __str__(self) -> str:
        return json.dumps(self.to_esri_json())

    @abstractmethod
    def to_shapely(self):
        ...


class PointContract(GeometryContract):
    geometry_type: ClassVar[GeometryType] = GeometryType.POINT

    x: float = 0.0
    y: float = 0.0

    def to_array(self) -> List[float]:
        return [self.x, self.y]

    def to_shapely(self):
        return Point(self.x, self.y)


class MultipointContract(GeometryContract):
    geometry_type: ClassVar[GeometryType] = GeometryType.MULTIPOINT

    points: List[Coordinates] = Field(default_factory=list)

    def to_shapely(self):
        return MultiPoint([tuple(p[:2]) for p in self.points])


class PolylineContract(GeometryContract):
    geometry_type: ClassVar[GeometryType] = GeometryType.POLYLINE

    paths: List[Path] = Field(default_factory=list)

    def to_shapely(self):
        lines = [[tuple(p[:2]) for p in path] for path in self.paths]
        if len(lines) == 1:
            return LineString(lines[0])
        return MultiLineString(lines)


class PolygonContract(GeometryContract):
    geometry_type: ClassVar[GeometryType] = GeometryType.POLYGON

    rings: List[Path] = Field(default_factory=list)

    def to_shapely(self):
        # ESRI rings: clockwise = outer, counter-clockwise = hole of the preceding outer ring.
        polygons = []
        for ring in self.rings:
            coords = [tuple(p[:2]) for p in ring]
            if _ring_is_clockwise(coords) or not polygons:
                polygons.append([coords, []])
            else:
                polygons[-1][1].append(coords)
        shapes = [Polygon(shell, holes) for shell, holes in polygons]
        if len(shapes) == 1:
            return shapes[0]
        return MultiPolygon(shapes)


class EnvelopeContract(GeometryContract):
    geometry_type: ClassVar[GeometryType] = GeometryType.ENVELOPE

    xmin: float = 0.0
    ymin: float = 0.0
    xmax: float = 0.0
    ymax: float = 0.0

    def to_shapely(self):
        return box(self.xmin, self.ymin, self.xmax, self.ymax)


Geometry = Union[PointContract, MultipointContract, PolylineContract, PolygonContract, EnvelopeContract]


def _ring_is_clockwise(coords: Sequence[Sequence[float]]) -> bool:
    # Shoelace sum is negative for counter-clockwise rings in a y-up system.
    total = 0.0
    for (x1, y1), (x2, y2) in zip(coords, coords[1:]):
        total += (x2 - x1) * (y2 + y1)
    return total > 0


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _field_is(obj: Mapping[str, Any], name: str, check) -> bool:
    return name in obj and check(obj[name])


def _is_array(value: Any) -> bool:
    return isinstance(value, list)


def classify_geometry(obj: Mapping[str, Any]) -> type:
    """Return the contract class an ESRI JSON geometry object represents."""
    if _field_is(obj, "rings", _is_array):
        return PolygonContract
    if _field_is(obj, "paths", _is_array):
        return PolylineContract
    if _field_is(obj, "xmin", _is_number):
        return EnvelopeContract
    if _field_is(obj, "points", _is_array):
        return MultipointContract
    if _field_is(obj, "x", _is_number):
        return PointContract
    raise SchemaError("Unrecognized geometry shape: expected one of rings, paths, xmin, points or x.")


def geometry_from_json(obj: Any) -> GeometryContract:
    """Deserialize an ESRI JSON geometry object into the matching contract."""
    if isinstance(obj, GeometryContract):
        return obj
    if isinstance(obj, (str, bytes)):
        try:
            obj = json.loads(obj)
        except ValueError as exc:
            raise SchemaError(f"Geometry is not valid JSON: {exc}") from exc
    if not isinstance(obj, Mapping):
        raise SchemaError(f"Geometry must be a JSON object, got {type(obj).__name__}.")
    cls = classify_geometry(obj)
    try:
        return cls.model_validate(dict(obj))
    except ValidationError as exc:
        raise SchemaError(f"Invalid {cls.geometry_type.value} geometry: {exc}") from exc


def spatial_reference_from(value: Union[int, str, SpatialReferenceContract, None]) -> Optional[SpatialReferenceContract]:
    """Build a spatial reference from a WKID or a WKT string."""
    if value is None or isinstance(value, SpatialReferenceContract):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return SpatialReferenceContract(wkid=value)
    text = str(value).strip()
    if text.isdigit():
        return SpatialReferenceContract(wkid=int(text))
    return SpatialReferenceContract(wkt=text)


def first_and_last_point_equal(path: Sequence[Sequence[float]]) -> bool:
    """True when the first and last x/y of ``path`` are identical; paths of fewer than two points are not rings."""
    if path is None:
        raise ValueError("path is required")
    if len(path) < 2:
        return False
    first, last = path[0], path[-1]
    return first[0] == last[0] and first[1] == last[1]


def _depth(value: Any) -> int:
    # Nesting depth of a JSON array of numbers; 0 for a number, -1 if malformed.
    if _is_number(value):
        return 0
    if not isinstance(value, list) or not value:
        return -1
    depths = {_depth(v) for v in value}
    if len(depths) != 1:
        return -1
    d = depths.pop()
    return -1 if d < 0 else d + 1


def geometry_from_array(value: Any, spatial_reference=None) -> GeometryContract:
    """Build a geometry from a JSON array of numbers nested 1, 2 or 3 levels deep.

    ``[x, y]`` is a point; ``[[x, y], ...]`` is a single path; ``[[[x, y], ...], ...]``
    is a set of paths. Paths become polygon rings only when every one of them
    is closed, otherwise they are polyline paths.
    """
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise SchemaError(f"Geometry array is not valid JSON: {exc}") from exc
    sr = spatial_reference_from(spatial_reference)
    depth = _depth(value)
    if depth == 1 and 2 <= len(value) <= 3:
        return PointContract(x=value[0], y=value[1], spatialReference=sr)
    if depth == 2:
        value = [value]
        depth = 3
    if depth == 3 and all(2 <= len(p) <= 3 for path in value for p in path):
        if all(first_and_last_point_equal(path) for path in value):
            return PolygonContract(rings=value, spatialReference=sr)
        return PolylineContract(paths=value, spatialReference=sr)
    raise SchemaError("Input must be a JSON array of numbers with 1, 2, or 3 nesting levels.")
