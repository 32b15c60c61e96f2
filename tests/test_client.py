import datetime as dt
import json
import logging

import pytest
import requests

from conftest import FakeResponse
from elc.client import ElcClient, flatten_coordinates
from elc.config import DEFAULT_URL, ElcSettings
from elc.contracts import LrsTypes, RouteInfo, RouteLocation
from elc.errors import ConfigurationError, SchemaError, ServiceError, TransportError
from elc.geometry import PointContract, PolylineContract

ELC_URL = "https://gis.example.test/arcgis/rest/services/Shared/ElcRestSOE/MapServer/exts/ElcRestSoe"
MAP_SERVER_URL = "https://gis.example.test/arcgis/rest/services/Shared/ElcRestSOE/MapServer"
ROUTES_URL = ELC_URL + "/routes"
FIND_URL = ELC_URL + "/Find Route Locations"
NEAREST_URL = ELC_URL + "/Find Nearest Route Locations"

LAYERS = {
    "layers": [
        {"id": 0, "name": "Current", "parentLayerId": -1, "subLayerIds": [1, 2, 3]},
        {"id": 1, "name": "Increase", "parentLayerId": 0, "subLayerIds": None},
        {"id": 2, "name": "Decrease", "parentLayerId": 0, "subLayerIds": None},
        {"id": 3, "name": "Ramp", "parentLayerId": 0, "subLayerIds": None},
        {"id": 4, "name": "2019", "parentLayerId": -1, "subLayerIds": [5]},
        {"id": 5, "name": "Increase", "parentLayerId": 4, "subLayerIds": None},
    ]
}


def _feature(paths):
    return {"features": [{"attributes": {"RouteID": "005"}, "geometry": {"paths": paths, "spatialReference": {"wkid": 2927}}}]}


@pytest.fixture
def client(fake_session):
    return ElcClient(ELC_URL, session=fake_session)


# ── construction
def test_client_derives_map_server_url(client):
    assert client.url == ELC_URL
    assert client.map_server_url == MAP_SERVER_URL
    assert client.find_route_locations_operation == "Find Route Locations"
    assert client.find_nearest_route_locations_operation == "Find Nearest Route Locations"
    assert client.routes_resource == "routes"


def test_client_rejects_url_without_extension():
    with pytest.raises(ConfigurationError):
        ElcClient("https://gis.example.test/arcgis/rest/services/Shared/ElcRestSOE/MapServer")


def test_client_defaults_and_settings():
    default = ElcClient()
    assert default.url == DEFAULT_URL
    assert default.map_server_url.endswith("/Shared/ElcRestSOE/MapServer")

    settings = ElcSettings(url=ELC_URL, routes_resource="")
    assert settings.routes_resource == "routes"
    from_settings = ElcClient.from_settings(settings)
    assert from_settings.settings == settings
    assert ElcSettings() == ElcSettings(url="")
    assert ElcSettings() != settings


def test_each_client_has_its_own_cache(fake_session):
    fake_session.replies[ROUTES_URL] = {"Current": {"005": 3}}
    a = ElcClient(ELC_URL, session=fake_session)
    b = ElcClient(ELC_URL, session=fake_session)
    a.list_routes()
    b.list_routes()
    assert len(fake_session.calls) == 2


# ── routes
def test_list_routes_parses_and_caches(client, fake_session, caplog):
    fake_session.replies[ROUTES_URL] = {
        "Current": {"005": 3, "005P101234": 4, "FERRY": 1},
        "2019": {"101": 1},
    }
    with caplog.at_level(logging.INFO, logger="elc.client"):
        routes = client.list_routes()
    assert list(routes) == ["Current", "2019"]
    current = routes["Current"]
    assert [r.name for r in current] == ["005", "005P101234", "FERRY"]
    assert current[0] == RouteInfo(name="005", lrs_types=LrsTypes.BOTH)
    assert current[1].lrs_types == LrsTypes.RAMP
    assert current[1].rrt == "P1"
    assert not current[2].has_valid_name
    assert "Loaded 2 LRS year(s)" in caplog.text

    assert client.routes is routes
    assert fake_session.calls == [("GET", ROUTES_URL, {"f": "json"})]


@pytest.mark.parametrize(
    "payload",
    [
        {"Current": ["005"]},
        {"Current": {"005": "3"}},
        {"Current": {"005": True}},
        ["Current"],
    ],
)
def test_list_routes_rejects_malformed_structure(client, fake_session, payload):
    fake_session.replies[ROUTES_URL] = payload
    with pytest.raises(SchemaError):
        client.list_routes()
    assert client._routes is None


# ── find route locations
def test_find_route_locations(client, fake_session):
    fake_session.replies[FIND_URL] = [
        {"Route": "005", "Arm": 10, "ArmCalcReturnCode": 0, "RouteGeometry": {"x": 1.0, "y": 2.0}},
        {"Route": "999", "Arm": 1, "LocatingError": "Route 999 not found.", "RouteGeometry": None},
        {"Route": "101", "Arm": 5, "EndArm": 6, "ArmCalcReturnCode": 0, "ArmCalcEndReturnCode": 3,
         "ArmCalcEndReturnMessage": "Warning", "RouteGeometry": {"paths": [[[0, 0], [1, 1]]]}},
    ]
    locations = [
        RouteLocation(route="005", arm=10),
        RouteLocation(route="999", arm=1),
        RouteLocation(route="101", arm=5, end_arm=6),
    ]
    results = client.find_route_locations(locations, dt.date(2020, 1, 2), out_sr=4326, lrs_year="Current")

    assert len(results) == 3
    assert [r.route for r in results] == ["005", "999", "101"]
    assert isinstance(results[0].route_geometry, PointContract)
    assert results[1].locating_error == "Route 999 not found."
    assert results[1].route_geometry is None
    assert isinstance(results[2].route_geometry, PolylineContract)
    assert results[2].arm_calc_end_return_code == 3

    method, url, data = fake_session.calls[0]
    assert (method, url) == ("POST", FIND_URL)
    assert data["f"] == "json"
    assert data["referenceDate"] == "01/02/2020"
    assert data["outSR"] == "4326"
    assert data["lrsYear"] == "Current"
    assert json.loads(data["locations"]) == [
        {"Route": "005", "Arm": 10.0},
        {"Route": "999", "Arm": 1.0},
        {"Route": "101", "Arm": 5.0, "EndArm": 6.0},
    ]


def test_find_route_locations_per_item_dates_and_wkt(client, fake_session):
    wkt = 'PROJCS["NAD_1983_HARN_StatePlane_Washington_South_FIPS_4602_Feet"]'
    fake_session.replies[FIND_URL] = [{"Route": "005", "Arm": 10}]
    client.find_route_locations([RouteLocation(route="005", arm=10, reference_date=dt.date(2019, 5, 6))], out_sr=wkt)
    data = fake_session.calls[0][2]
    assert data["referenceDate"] == ""
    assert data["outSR"] == wkt
    assert "lrsYear" not in data
    assert json.loads(data["locations"])[0]["ReferenceDate"] == "05/06/2019"


def test_find_route_locations_omits_out_sr(client, fake_session):
    fake_session.replies[FIND_URL] = []
    assert client.find_route_locations([]) == []
    assert "outSR" not in fake_session.calls[0][2]


def test_find_route_locations_rejects_bad_spatial_reference(client):
    with pytest.raises(TypeError):
        client.find_route_locations([RouteLocation(route="005")], out_sr=4326.0)


def test_find_route_locations_requires_one_result_per_input(client, fake_session):
    fake_session.replies[FIND_URL] = [{"Route": "005", "Arm": 10}]
    with pytest.raises(SchemaError):
        client.find_route_locations([RouteLocation(route="005", arm=10), RouteLocation(route="101", arm=1)])


def test_find_route_locations_bad_geometry_is_schema_error(client, fake_session):
    fake_session.replies[FIND_URL] = [{"Route": "005", "RouteGeometry": {"wat": 1}}]
    with pytest.raises(SchemaError):
        client.find_route_locations([RouteLocation(route="005")])


def test_find_route_locations_non_array_is_schema_error(client, fake_session):
    fake_session.replies[FIND_URL] = {"Route": "005"}
    with pytest.raises(SchemaError):
        client.find_route_locations([RouteLocation(route="005")])


# ── find nearest route locations
def test_find_nearest_route_locations_may_return_fewer(client, fake_session):
    fake_session.replies[NEAREST_URL] = [
        {"Id": 0, "Route": "005", "Srmp": 100.1, "Distance": 12.5, "Angle": 45.0, "EventPoint": {"x": 1, "y": 2}},
        {"Id": 2, "Route": "101", "Srmp": 5.0, "Distance": -3.0, "Angle": 270.0, "EventPoint": {"x": 5, "y": 6}},
    ]
    results = client.find_nearest_route_locations(
        [[1, 2], [3, 4], [5, 6, 99]],
        dt.datetime(2020, 1, 2, 8, 0),
        200,
        2927,
        4326,
        route_filter="LIKE '005%'",
    )
    assert len(results) == 2
    assert [r.id for r in results] == [0, 2]
    assert results[1].event_point.to_array() == [5.0, 6.0]

    method, url, data = fake_session.calls[0]
    assert (method, url) == ("POST", NEAREST_URL)
    assert json.loads(data["coordinates"]) == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    assert data["referenceDate"] == "01/02/2020"
    assert data["searchRadius"] == "200.0"
    assert data["inSR"] == "2927"
    assert data["outSR"] == "4326"
    assert data["routeFilter"] == "LIKE '005%'"
    assert "lrsYear" not in data


def test_find_nearest_route_locations_rejects_extra_results(client, fake_session):
    fake_session.replies[NEAREST_URL] = [{"Route": "005"}, {"Route": "005"}]
    with pytest.raises(SchemaError):
        client.find_nearest_route_locations([1, 2], dt.date(2020, 1, 2), 100, None, None)


def test_flatten_coordinates():
    assert flatten_coordinates([1, 2, 3, 4]) == [1.0, 2.0, 3.0, 4.0]
    assert flatten_coordinates([(1, 2), [3, 4, 5]]) == [1.0, 2.0, 3.0, 4.0]
    with pytest.raises(ValueError):
        flatten_coordinates([1, 2, 3])
    with pytest.raises(ValueError):
        flatten_coordinates([[1]])
    with pytest.raises(TypeError):
        flatten_coordinates(["1,2"])


# ── find route
def test_find_route_queries_each_flagged_layer(client, fake_session):
    fake_session.replies[MAP_SERVER_URL] = LAYERS
    fake_session.replies[MAP_SERVER_URL + "/1/query"] = _feature([[[0, 0], [1, 1]]])
    fake_session.replies[MAP_SERVER_URL + "/2/query"] = _feature([[[1, 1], [0, 0]]])

    result = client.find_route(RouteInfo(name="005", lrs_types=LrsTypes.BOTH))

    assert set(result) == {LrsTypes.INCREASE, LrsTypes.DECREASE}
    assert result[LrsTypes.INCREASE].paths == [[[0, 0], [1, 1]]]
    assert result[LrsTypes.DECREASE].spatial_reference.wkid == 2927
    urls = [url for _, url, _ in fake_session.calls]
    assert urls == [MAP_SERVER_URL, MAP_SERVER_URL + "/1/query", MAP_SERVER_URL + "/2/query"]
    params = fake_session.calls[1][2]
    assert params == {"f": "json", "where": "RouteID = '005'", "returnGeometry": "true", "outSR": ""}


def test_find_route_other_year_and_out_sr(client, fake_session):
    fake_session.replies[MAP_SERVER_URL] = LAYERS
    fake_session.replies[MAP_SERVER_URL + "/5/query"] = _feature([[[0, 0], [2, 2]]])

    result = client.find_route(RouteInfo(name="005", lrs_types=LrsTypes.BOTH), lrs_year="2019", out_sr=4326)

    assert list(result) == [LrsTypes.INCREASE]
    assert fake_session.calls[-1][2]["outSR"] == "4326"


def test_find_route_rejects_bad_spatial_reference(client, fake_session):
    fake_session.replies[MAP_SERVER_URL] = LAYERS
    with pytest.raises(TypeError):
        client.find_route(RouteInfo(name="005", lrs_types=LrsTypes.BOTH), out_sr=4326.0)
    with pytest.raises(TypeError):
        client.find_route(RouteInfo(name="005", lrs_types=LrsTypes.BOTH), out_sr=True)
    assert not any(url.endswith("/query") for _, url, _ in fake_session.calls)


def test_find_route_no_features_is_none(client, fake_session):
    fake_session.replies[MAP_SERVER_URL] = LAYERS
    fake_session.replies[MAP_SERVER_URL + "/3/query"] = {"features": []}
    assert client.find_route(RouteInfo(name="005P101234", lrs_types=LrsTypes.RAMP)) is None
    assert client.find_route(RouteInfo(name="005", lrs_types=LrsTypes.NONE)) is None
    # layer tree fetched once
    assert [url for _, url, _ in fake_session.calls].count(MAP_SERVER_URL) == 1


def test_find_route_unknown_year(client, fake_session):
    fake_session.replies[MAP_SERVER_URL] = LAYERS
    with pytest.raises(LookupError):
        client.find_route(RouteInfo(name="005", lrs_types=LrsTypes.BOTH), lrs_year="1999")


def test_find_route_default_root_layer(client, fake_session):
    fake_session.replies[MAP_SERVER_URL] = LAYERS
    fake_session.replies[MAP_SERVER_URL + "/1/query"] = _feature([[[0, 0], [1, 1]]])
    result = client.find_route(RouteInfo(name="005", lrs_types=LrsTypes.INCREASE), lrs_year=None)
    assert list(result) == [LrsTypes.INCREASE]


def test_layers_property(client, fake_session):
    fake_session.replies[MAP_SERVER_URL] = LAYERS
    assert [layer.name for layer in client.layers][:2] == ["Current", "Increase"]


# ── errors
def test_http_error_propagates(client, fake_session):
    fake_session.replies[ROUTES_URL] = FakeResponse({"message": "boom"}, status_code=500)
    with pytest.raises(requests.HTTPError):
        client.list_routes()


def test_transport_error_propagates(client, monkeypatch):
    def refuse(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(client.session, "post", refuse)
    with pytest.raises(TransportError):
        client.find_route_locations([RouteLocation(route="005")])


def test_arcgis_error_payload(client, fake_session):
    fake_session.replies[FIND_URL] = {"error": {"code": 400, "message": "Unable to complete operation.", "details": ["bad locations"]}}
    with pytest.raises(ServiceError) as info:
        client.find_route_locations([RouteLocation(route="005")])
    assert info.value.code == 400
    assert info.value.details == ["bad locations"]
    assert isinstance(info.value, requests.HTTPError)


def test_non_json_response(client, fake_session):
    fake_session.replies[ROUTES_URL] = FakeResponse(text="<html>Proxy error</html>")
    with pytest.raises(SchemaError):
        client.list_routes()
