"""Tests for responder status synchronisation."""
import pytest

from config import NavigationConfig
from location_sync import SYNC_FAILED_MESSAGE, ResponderLocationSync
from network import NetworkError
from positioning import LocationFix

CONFIG = NavigationConfig(status_api_base_url="https://dispatch.example/", responder_id="unit-7")
FIX = LocationFix(40.7128, -74.0060, accuracy_m=12.0, timestamp_ms=1)


class RecordingPoster:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, url, payload):
        self.calls.append((url, payload))
        if self.error is not None:
            raise self.error
        return {"success": True}


def make_sync(poster):
    return ResponderLocationSync("unit-7", CONFIG, poster=poster)


def test_nothing_is_sent_until_available_with_a_location():
    poster = RecordingPoster()
    sync = make_sync(poster)
    sync.update_location(FIX)
    assert poster.calls == []
    sync.set_available(False)
    assert poster.calls == []
    assert not sync.is_active


def test_posts_available_status_with_coordinates():
    poster = RecordingPoster()
    sync = make_sync(poster)
    synced = []
    sync.synced.connect(lambda fix: synced.append(fix))

    sync.set_available(True)
    sync.update_location(FIX)

    assert poster.calls == [(
        "https://dispatch.example/api/responder/status",
        {"responderId": "unit-7", "status": "Available",
         "latitude": 40.7128, "longitude": -74.0060, "accuracy": 12.0},
    )]
    assert synced == [FIX]
    assert sync.is_active


def test_periodic_tick_resends_latest_location():
    poster = RecordingPoster()
    sync = make_sync(poster)
    sync.set_available(True)
    sync.update_location(FIX)
    sync.sync_now()
    assert len(poster.calls) == 2


def test_going_unavailable_stops_the_timer():
    poster = RecordingPoster()
    sync = make_sync(poster)
    sync.set_available(True)
    sync.update_location(FIX)
    sync.set_available(False)
    assert not sync.is_active
    sync.sync_now()
    assert len(poster.calls) == 1


@pytest.mark.parametrize(
    "error, expected",
    [
        (NetworkError("Responder not found", status=404), "Responder not found"),
        (NetworkError(""), SYNC_FAILED_MESSAGE),
        (RuntimeError("socket closed"), SYNC_FAILED_MESSAGE),
    ],
)
def test_failures_are_reported_and_timer_keeps_running(error, expected):
    sync = make_sync(RecordingPoster(error=error))
    failures = []
    sync.sync_failed.connect(lambda message: failures.append(message))
    sync.set_available(True)
    sync.update_location(FIX)
    assert failures == [expected]
    assert sync.is_active


def test_handles_tracker_messages():
    poster = RecordingPoster()
    sync = make_sync(poster)
    sync.set_available(True)
    sync.handle_message({"type": "SOMETHING_ELSE"})
    assert poster.calls == []
    sync.handle_message({"type": "LOCATION_UPDATE", "location": FIX.to_dict()})
    assert poster.calls[0][1]["latitude"] == 40.7128
