# elc/config.py
# Hard-coded service/operation settings for the WSDOT ELC REST SOE
from __future__ import annotations

from dataclasses import dataclass

# ── ELC REST SOE
# Source: Shared / ElcRestSOE → extension "ElcRestSoe"
# The map service hosting the extension is everything before "/exts/".
DEFAULT_URL = "https://www.wsdot.wa.gov/geoservices/arcgis/rest/services/Shared/ElcRestSOE/MapServer/exts/ElcRestSoe"
DEFAULT_FIND_ROUTE_LOCATIONS_OPERATION = "Find Route Locations"
DEFAULT_FIND_NEAREST_ROUTE_LOCATIONS_OPERATION = "Find Nearest Route Locations"
DEFAULT_ROUTES_RESOURCE = "routes"
MAP_SERVICE_URL_PATTERN = r"(?i)^(.+)/exts/.+$"

# ── LRS layers
# Group layer per LRS year, each holding Increase / Decrease / Ramp sublayers
DEFAULT_LRS_YEAR = "Current"
ROUTE_ID_FIELD = "RouteID"

# ── HTTP
ELC_TIMEOUT = 45          # seconds


@dataclass(frozen=True)
class ElcSettings:
    """Endpoint settings for one ELC REST SOE. Empty values fall back to the defaults."""

    url: str = DEFAULT_URL
    find_route_locations_operation: str = DEFAULT_FIND_ROUTE_LOCATIONS_OPERATION
    find_nearest_route_locations_operation: str = DEFAULT_FIND_NEAREST_ROUTE_LOCATIONS_OPERATION
    routes_resource: str = DEFAULT_ROUTES_RESOURCE

    def __post_init__(self):
        defaults = {
            "url": DEFAULT_URL,
            "find_route_locations_operation": DEFAULT_FIND_ROUTE_LOCATIONS_OPERATION,
            "find_nearest_route_locations_operation": DEFAULT_FIND_NEAREST_ROUTE_LOCATIONS_OPERATION,
            "routes_resource": DEFAULT_ROUTES_RESOURCE,
        }
        for name, default in defaults.items():
            if not getattr(self, name):
                object.__setattr__(self, name, default)
