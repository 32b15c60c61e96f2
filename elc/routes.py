# elc/routes.py
"""
State route identifier helpers.

A WSDOT route identifier is SR + RRT + RRQ, for example:
- "005"          -> SR 005, mainline
- "005C1"        -> SR 005, RRT "C1"
- "005P101234"   -> SR 005, RRT "P1", RRQ "01234"

The SR is always three digits. The Related Route Type (RRT) is two
alphanumerics and the Related Route Qualifier (RRQ) up to six more.
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, NamedTuple, Optional, Set

# Anchored to the whole identifier; trailing characters make it invalid.
_ROUTE_ID_RE = re.compile(r"^(?P<sr>[0-9]{3})(?:(?P<rrt>[A-Za-z0-9]{2})(?P<rrq>[A-Za-z0-9]{0,6}))?$")
_MILEAGE_RE = re.compile(r"^(\d+)(B)?", re.IGNORECASE)

# Ordered: the first pattern that matches wins.
_RRT_LIST = """\
AR Alternate Route
CO Couplet
CD Collector Distributor (Decreasing)
CI Collector Distributor (Increasing)
FD Frontage Road (Decreasing)
FI Frontage Road (Increasing)
FS Ferry Ship (Boat)
FT Ferry Terminal
HI Grade-Separated HOV (Increasing)
HD Grade-Separated HOV (Decreasing)
LX Crossroad within Interchange
PR Proposed Route
PU Extension of P ramp
P[1-9] Off Ramp (Increasing)
QU Extension of Q ramp
Q[1-9] On Ramp (Increasing)
RL Reversible Lane
RU Extension of R ramp
R[1-9] Off Ramp (Decreasing)
SP Spur
SU Extension of S ramp
S[1-9] On Ramp (Decreasing)
TB Transitional Turnback
TR Temporary Route
FU Future"""


def _load_rrt_descriptions(text: str):
    out = []
    for line in text.splitlines():
        pattern, _, description = line.strip().partition(" ")
        if pattern and description:
            out.append((re.compile(pattern), description.strip()))
    return out

RRT_DESCRIPTIONS = _load_rrt_descriptions(_RRT_LIST)


class ParsedRouteId(NamedTuple):
    sr: str
    rrt: str
    rrq: str
    ok: bool


_INVALID = ParsedRouteId("", "", "", False)


def parse_route_id(code: Optional[str]) -> ParsedRouteId:
    """Split a route identifier into SR, RRT and RRQ.

    A bare SR is valid and yields empty RRT and RRQ strings. When the
    identifier cannot be parsed all parts are empty and ``ok`` is False.
    """
    if not code:
        return _INVALID
    m = _ROUTE_ID_RE.match(code)
    if not m:
        return _INVALID
    return ParsedRouteId(m.group("sr"), m.group("rrt") or "", m.group("rrq") or "", True)


def get_rrt_description(rrt: Optional[str]) -> Optional[str]:
    """Text description of an RRT; "Mainline" for an empty or "ML" RRT, None if unknown."""
    if not rrt or rrt.upper() == "ML":
        return "Mainline"
    for pattern, description in RRT_DESCRIPTIONS:
        if pattern.search(rrt):
            return description
    return None


def get_rrq_description(route) -> Optional[str]:
    """Describe a numeric RRQ as the milepost where the related route meets its SR.

    The leading digits of the RRQ are the milepost times 100; a trailing "B"
    marks back mileage, e.g. SR "005", RRQ "01234B" -> "Intersects 005 @ 12.34B".
    """
    m = _MILEAGE_RE.match(route.rrq or "")
    if not m:
        return None
    milepost = int(m.group(1)) / 100
    return f"Intersects {route.sr} @ {milepost:.2f}{m.group(2) or ''}"


def categorize_routes(codes: Iterable[str]) -> Dict[str, Dict[str, Set[str]]]:
    """Group route identifiers by SR, then RRT. Unparseable identifiers are skipped."""
    out: Dict[str, Dict[str, Set[str]]] = {}
    for code in codes:
        sr, rrt, rrq, ok = parse_route_id(code)
        if not ok:
            continue
        out.setdefault(sr, {}).setdefault(rrt, set()).add(rrq)
    return out


def group_route_infos(route_infos: Iterable) -> Dict[str, Dict[str, List]]:
    """Group RouteInfo objects by SR, then RRT; useful for cascading SR/RRT/RRQ pickers."""
    out: Dict[str, Dict[str, List]] = {}
    for ri in route_infos:
        if not ri.has_valid_name:
            continue
        out.setdefault(ri.sr, {}).setdefault(ri.rrt, []).append(ri)
    return out
