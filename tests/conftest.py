"""Shared fixtures: a Qt application, isolated logs and route payloads."""

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

pytest.importorskip("PySide6")
from PySide6.QtWidgets import QApplication  # noqa: E402

from logger import setup_logger  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    app = QApplication.instance()
    if app is None:
        app = QApplication([])
    yield app


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path):
    return setup_logger(log_dir=tmp_path / "logs")


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


def osrm_payload(points, steps=(), distance=5230.0, duration=610.0):
    """An OSRM-style answer. ``points`` and step locations are (lat, lon)."""
    return {
        "code": "Ok",
        "routes": [{
            "distance": distance,
            "duration": duration,
            "geometry": {"type": "LineString",
                         "coordinates": [[lon, lat] for lat, lon in points]},
            "legs": [{
                "steps": [
                    {
                        "distance": 100.0,
                        "duration": 12.0,
                        "name": step.get("name", ""),
                        "maneuver": dict(
                            {k: v for k, v in step.items() if k not in ("location", "name")},
                            location=[step["location"][1], step["location"][0]],
                        ),
                    }
                    for step in steps
                ],
            }],
        }],
    }


@pytest.fixture()
def route_payload():
    return osrm_payload
