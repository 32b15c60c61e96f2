from .client import ElcClient, flatten_coordinates
from .config import ElcSettings
from .contracts import (
    LayerInfo,
    LrsTypes,
    MapServerInfo,
    RouteInfo,
    RouteLocation,
    RouteLocationSet,
    RouteType,
)
from .errors import ConfigurationError, ElcError, SchemaError, ServiceError, TransportError
from .geometry import (
    EnvelopeContract,
    GeometryContract,
    GeometryType,
    MultipointContract,
    PointContract,
    PolygonContract,
    PolylineContract,
    SpatialReferenceContract,
    geometry_from_array,
    geometry_from_json,
)
from .routes import categorize_routes, get_rrq_description, get_rrt_description, parse_route_id

__version__ = "1.0.0"
