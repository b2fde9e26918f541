"""Shared fixtures for the CityTrails test suite.

Provides a Flask test client, canned portal payloads, and resets the
per-process state (neighbourhood cache, per-visitor browsers) between
tests so nothing leaks from one test into the next.
"""

import os

import pytest

# Suppress the SECRET_KEY startup guard
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SKIP_SMOKE_TEST", "1")
os.environ.setdefault("RATE_LIMIT_DEFAULT", "10000/minute")
os.environ.setdefault("RATE_LIMIT_MAPS", "10000/minute")

from app import app, closure_browsers, neighbourhood_cache  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_state():
    neighbourhood_cache.clear()
    closure_browsers.clear()
    yield
    neighbourhood_cache.clear()
    closure_browsers.clear()


@pytest.fixture()
def client():
    """Flask test client with CSRF disabled (we're testing logic, not CSRF)."""
    app.config["TESTING"] = True
    app.config["WTF_CSRF_ENABLED"] = False
    with app.test_client() as c:
        yield c


@pytest.fixture()
def trail_rows():
    return [
        {
            "activity_type": "Construction",
            "type_of_closure": "Temporary",
            "details": "Path washout",
            "infrastructure": "Trail",
            "location_name": "Mill Creek Ravine",
            "start_date": "2024-05-01T00:00:00.000",
            "latitude": "53.52",
            "longitude": "-113.46",
        },
        {
            "activity_type": "Construction",
            "type_of_closure": "Temporary",
            "details": "PATH WASHOUT ",
            "infrastructure": "Bridge",
            "location_name": "Somewhere Else",
        },
        {
            "activity_type": "Maintenance",
            "type_of_closure": "Permanent",
            "details": "Bank erosion near stairs",
            "infrastructure": "Stairs",
            "start_date": "2024-06-10T00:00:00.000",
            "end_date": "2024-09-01T00:00:00.000",
            "duration": "Summer",
            "latitude": "53.54",
            "longitude": "-113.50",
        },
    ]


@pytest.fixture()
def park_rows():
    return [
        {
            "id": "101",
            "official_name": "William Hawrelak Park",
            "common_name": "Hawrelak Park",
            "status": "Active",
            "type": "Park",
            "class": "District",
            "address": "9930 Groat Rd NW",
            "area": "556000",
            "latitude": "53.5284",
            "longitude": "-113.5470",
        },
        {
            "id": "abc",
            "official_name": "Rundle Park",
            "common_name": "",
            "status": "INACTIVE",
            "type": "Park",
            "class": "Regional",
            "address": "2909 118 Ave NW",
            "area": "1640000",
            "latitude": "53.5651",
            "longitude": "-113.3918",
        },
        {
            "id": "303",
            "official_name": "Louise McKinney Riverfront Park",
            "common_name": "Louise McKinney",
            "status": "active",
            "type": "Park",
            "class": "District",
            "address": "9999 Grierson Hill Rd NW",
            "area": None,
        },
    ]
