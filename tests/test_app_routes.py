"""Route tests for app.py: pages, proxy, closure toggles and previews.

The portal client is patched at the app module's shared instance so no
request leaves the process.
"""

import json
from unittest.mock import patch

import pytest

import app as app_module
from opendata import OpenDataError, OpenDataHTTPError


def _patch_client(method, **kwargs):
    return patch.object(app_module.opendata_client, method, **kwargs)


# =========================================================================
# Proxy
# =========================================================================

class TestParksProxy:
    def test_success_returns_upstream_json(self, client, park_rows):
        with _patch_client("fetch_parks", return_value=park_rows):
            resp = client.get("/api/parks")

        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.mimetype == "application/json"
        assert json.loads(resp.data) == park_rows

    def test_upstream_non_2xx(self, client):
        err = OpenDataHTTPError(502, "https://example.test")
        with _patch_client("fetch_parks", side_effect=err):
            resp = client.get("/api/parks")
        assert resp.status_code == 500
        assert resp.data == b"Fetch error"

    def test_network_exception(self, client):
        with _patch_client("fetch_parks", side_effect=OpenDataError("boom")):
            resp = client.get("/api/parks")
        assert resp.status_code == 500
        assert resp.data == b"Server error"

    def test_unexpected_exception(self, client):
        with _patch_client("fetch_parks", side_effect=ValueError("bad payload")):
            resp = client.get("/api/parks")
        assert resp.status_code == 500
        assert resp.data == b"Server error"


# =========================================================================
# Static pages
# =========================================================================

class TestPages:
    def test_index(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert b"Explore Edmonton" in resp.data

    def test_about(self, client):
        assert client.get("/about").status_code == 200

    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ok"

    def test_unknown_page_404(self, client):
        assert client.get("/nope").status_code == 404

    def test_visitor_cookie_set(self, client):
        resp = client.get("/")
        assert "ct_vid=" in resp.headers.get("Set-Cookie", "")


# =========================================================================
# Parks
# =========================================================================

class TestParksPages:
    def test_directory_lists_parks(self, client, park_rows):
        with _patch_client("fetch_parks", return_value=park_rows):
            resp = client.get("/parks")
        body = resp.data.decode()
        assert resp.status_code == 200
        assert "Hawrelak Park" in body
        assert "Rundle Park" in body

    def test_directory_filters(self, client, park_rows):
        with _patch_client("fetch_parks", return_value=park_rows):
            resp = client.get("/parks?active=1&class=District")
        body = resp.data.decode()
        assert "Hawrelak Park" in body
        assert "Rundle Park</h3>" not in body

    def test_directory_distance_shown(self, client, park_rows):
        with _patch_client("fetch_parks", return_value=park_rows):
            resp = client.get("/parks?lat=53.5651&lon=-113.3918&near=1")
        assert "Distance: 0.0 km" in resp.data.decode()

    def test_directory_upstream_failure_is_empty(self, client):
        with _patch_client("fetch_parks", side_effect=OpenDataError("down")):
            resp = client.get("/parks")
        assert resp.status_code == 200
        assert "No parks found." in resp.data.decode()

    def test_map_page_marks_selection(self, client, park_rows):
        with _patch_client("fetch_parks", return_value=park_rows):
            resp = client.get("/parks/map?selected=101")
        body = resp.data.decode()
        assert resp.status_code == 200
        assert 'class="selected"' in body
        assert "9930 Groat Rd NW" in body

    def test_map_image(self, client, park_rows):
        with _patch_client("fetch_parks", return_value=park_rows), \
                patch.object(app_module, "generate_park_map", return_value=b"\x89PNGfake") as gen:
            resp = client.get("/parks/map.png?selected=101")
        assert resp.status_code == 200
        assert resp.mimetype == "image/png"
        assert gen.call_args[1]["selected"].id == 101

    def test_map_image_failure_404(self, client):
        with _patch_client("fetch_parks", return_value=[]), \
                patch.object(app_module, "generate_park_map", return_value=None):
            assert client.get("/parks/map.png").status_code == 404


# =========================================================================
# Closures
# =========================================================================

@pytest.fixture()
def no_geocode():
    with _patch_client("find_neighbourhood", return_value=None) as m:
        yield m


class TestClosures:
    def test_trail_list_renders_deduplicated_cards(self, client, trail_rows, no_geocode):
        with _patch_client("fetch_trail_closures", return_value=trail_rows):
            resp = client.get("/closures?kind=trail")
        body = resp.data.decode()

        assert resp.status_code == 200
        assert body.count('id="card-') == 2
        assert "Trail – Mill Creek Ravine" in body
        assert "Bridge – Somewhere Else" not in body
        assert 'class="card permanent"' in body

    def test_traffic_list(self, client, no_geocode):
        rows = [{"description": "Lane closed", "point": "POINT (-113.49 53.55)"}]
        with _patch_client("fetch_traffic_disruptions", return_value=rows):
            resp = client.get("/closures?kind=traffic")
        body = resp.data.decode()
        assert "Lane closed" in body
        assert "Traffic Disruptions" in body

    def test_fetch_failure_shows_empty_list(self, client):
        with _patch_client("fetch_trail_closures", side_effect=OpenDataError("down")):
            resp = client.get("/closures?kind=trail")
        assert resp.status_code == 200
        assert "No records found." in resp.data.decode()

    def test_map_view_embeds_widget(self, client):
        with _patch_client("fetch_trail_closures") as fetch:
            resp = client.get("/closures?kind=traffic&view=map")
        body = resp.data.decode()
        assert "<iframe" in body
        assert app_module.PORTAL_CONFIG.widget_urls["traffic"] in body
        fetch.assert_not_called()

    def test_toggle_expands_one_card(self, client, no_geocode):
        long_text = "w" * 300
        rows = [
            {"details": long_text, "infrastructure": "Trail", "start_date": "2024-01-01"},
            {"details": "x" * 300, "infrastructure": "Path"},
        ]
        with _patch_client("fetch_trail_closures", return_value=rows):
            body = client.get("/closures?kind=trail").data.decode()
            assert long_text not in body
            assert "w" * 220 + "…" in body
            assert body.count("Show more") == 2

            visitor = client.get_cookie("ct_vid").value
            state = app_module.closure_browsers.get(visitor).state
            key = state.cards()[0].toggle_key

            resp = client.post("/closures/toggle", data={
                "key": key,
                "kind": "trail",
                "anchor": "card-0",
                "generation": state.generation,
            })
            assert resp.status_code == 302
            assert resp.headers["Location"].endswith("#card-0")

            body = client.get("/closures?kind=trail").data.decode()
        assert long_text in body
        assert body.count("Show less") == 1
        assert body.count("Show more") == 1

    def test_toggle_from_stale_page_ignored(self, client, no_geocode):
        rows = [{"details": "q" * 300, "infrastructure": "Trail"}]
        with _patch_client("fetch_trail_closures", return_value=rows):
            client.get("/closures?kind=trail")
            visitor = client.get_cookie("ct_vid").value
            stale = app_module.closure_browsers.get(visitor).state

            client.get("/closures?kind=trail&refresh=1")
            client.post("/closures/toggle", data={
                "key": stale.cards()[0].toggle_key,
                "kind": "trail",
                "generation": stale.generation,
            })
            body = client.get("/closures?kind=trail").data.decode()

        assert body.count("Show more") == 1
        assert "Show less" not in body

    def test_preview_image(self, client, trail_rows, no_geocode):
        with _patch_client("fetch_trail_closures", return_value=trail_rows):
            client.get("/closures?kind=trail")
        with patch.object(app_module, "generate_closure_preview", return_value=b"\x89PNGfake"):
            resp = client.get("/closures/trail/0/map.png")
        assert resp.status_code == 200
        assert resp.mimetype == "image/png"

    def test_preview_out_of_range(self, client):
        assert client.get("/closures/trail/5/map.png").status_code == 404
