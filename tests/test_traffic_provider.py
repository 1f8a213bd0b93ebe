import unittest

import requests

from urbanai.cache import CacheLayer
from urbanai.domain import LocationKey, RecordSource, TrafficRecord
from urbanai.errors import SchemaMismatch
from urbanai.providers import http
from urbanai.providers.traffic import (
    TOMTOM_FLOW_URL,
    TOMTOM_INCIDENTS_URL,
    TrafficAdapter,
    build_traffic_sources,
    fetch_tomtom,
)
from urbanai.storage.memory import InMemoryKeyValueStore

DHAKA = LocationKey(latitude=23.8103, longitude=90.4125, name="Dhaka")


class DummyResp:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, flow, incidents):
        self.flow = flow
        self.incidents = incidents
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        if url == TOMTOM_FLOW_URL:
            return DummyResp(self.flow)
        if url == TOMTOM_INCIDENTS_URL:
            return DummyResp(self.incidents)
        raise requests.ConnectionError(url)


def _flow(current=30.0, free=60.0, closed=False):
    return {"flowSegmentData": {"currentSpeed": current, "freeFlowSpeed": free, "roadClosure": closed}}


class TestTrafficProvider(unittest.TestCase):
    def setUp(self):
        self._orig_session = http.session

    def tearDown(self):
        http.session = self._orig_session

    def _use(self, flow, incidents):
        http.session = FakeSession(flow, incidents)
        return http.session

    def test_congestion_and_incidents(self):
        session = self._use(_flow(), {"incidents": [{"type": "Feature"}] * 3})
        fields = fetch_tomtom(DHAKA, 5.0, api_key="tt")

        self.assertEqual(fields["congestion_level"], 50.0)
        self.assertEqual(fields["incident_count"], 3)
        self.assertEqual(fields["average_speed"], 30.0)

        bbox = session.calls[1][1]["bbox"].split(",")
        min_lon, min_lat, max_lon, max_lat = (float(v) for v in bbox)
        self.assertLess(min_lon, DHAKA.longitude)
        self.assertLess(min_lat, DHAKA.latitude)
        self.assertGreater(max_lon, DHAKA.longitude)
        self.assertGreater(max_lat, DHAKA.latitude)
        self.assertAlmostEqual(min_lon, 90.3625)

    def test_road_closure_is_full_congestion(self):
        self._use(_flow(current=0.0, closed=True), {"incidents": []})
        self.assertEqual(fetch_tomtom(DHAKA, 5.0, api_key="tt")["congestion_level"], 100.0)

    def test_faster_than_free_flow_clamps_to_zero(self):
        self._use(_flow(current=70.0), {"incidents": []})
        self.assertEqual(fetch_tomtom(DHAKA, 5.0, api_key="tt")["congestion_level"], 0.0)

    def test_bad_shapes_are_schema_mismatches(self):
        self._use(_flow(free=0.0), {"incidents": []})
        with self.assertRaises(SchemaMismatch):
            fetch_tomtom(DHAKA, 5.0, api_key="tt")

        self._use(_flow(), {"incidents": None})
        with self.assertRaises(SchemaMismatch):
            fetch_tomtom(DHAKA, 5.0, api_key="tt")

        self._use({"flowSegmentData": [30.0, 60.0]}, {"incidents": []})
        with self.assertRaises(SchemaMismatch):
            fetch_tomtom(DHAKA, 5.0, api_key="tt")

    def test_without_key_traffic_is_synthesized(self):
        sources = build_traffic_sources()
        self.assertEqual(sources, [])

        cache = CacheLayer(InMemoryKeyValueStore(), TrafficAdapter.domain, TrafficRecord)
        record = TrafficAdapter(cache, sources, ttl_seconds=300).fetch(DHAKA)

        self.assertEqual(record.source, RecordSource.SYNTHESIZED)
        self.assertGreaterEqual(record.congestion_level, 10.0)
        self.assertLessEqual(record.congestion_level, 90.0)
        self.assertGreaterEqual(record.average_speed, 5.0)


if __name__ == "__main__":
    unittest.main()
