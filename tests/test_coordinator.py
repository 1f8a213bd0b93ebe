import asyncio
import math
import time
import unittest
from datetime import datetime, timedelta, timezone

from urbanai.coordinator import AggregationCoordinator
from urbanai.domain import RECORD_TYPES, Domain, LocationKey, RecordSource
from urbanai.errors import InvalidLocationError

DHAKA = LocationKey(latitude=23.8103, longitude=90.4125, name="Dhaka")
CHITTAGONG = LocationKey(latitude=22.3569, longitude=91.7832, name="Chittagong")

STUB_FIELDS = {
    Domain.WEATHER: {"temperature": 28.0, "condition": "Clear"},
    Domain.TRAFFIC: {"congestion_level": 40.0, "incident_count": 1, "average_speed": 30.0},
    Domain.AIR_QUALITY: {"aqi": 80},
    Domain.RESOURCES: {
        "water_usage": 120.0,
        "electricity_usage": 150.0,
        "waste_generation": 50.0,
        "recycling_rate": 30.0,
    },
    Domain.GREEN_SPACE: {"total_area": 100.0, "tree_count": 2500, "park_count": 4, "biodiversity_index": 60.0},
}


class StubAdapter:
    """Adapter double: optional per-location delay, optional failure, fixed fields."""

    def __init__(self, domain):
        self.domain = domain
        self.fetch_calls = []
        self.offline_calls = []
        self.delays = {}
        self.fail = False
        self.fetched_at = None

    def _record(self, location, source):
        return RECORD_TYPES[self.domain](
            location=location.bucket(2),
            source=source,
            provider="stub",
            fetched_at=self.fetched_at or datetime.now(timezone.utc),
            **STUB_FIELDS[self.domain],
        )

    def fetch(self, location):
        self.fetch_calls.append(location)
        delay = self.delays.get(location.bucket(2), 0.0)
        if delay:
            time.sleep(delay)
        if self.fail:
            raise RuntimeError("adapter bug")
        return self._record(location, RecordSource.LIVE)

    def offline_record(self, location):
        self.offline_calls.append(location)
        return self._record(location, RecordSource.SYNTHESIZED)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestAggregationCoordinator(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.adapters = {domain: StubAdapter(domain) for domain in Domain}
        self.clock = FakeClock()
        self.coordinator = AggregationCoordinator(
            self.adapters,
            min_refresh_interval=10.0,
            refresh_ceiling=1.0,
            precision=2,
            clock=self.clock,
        )

    def _fetch_counts(self):
        return {d: len(a.fetch_calls) for d, a in self.adapters.items()}

    async def test_refresh_fills_every_domain(self):
        snapshot = await self.coordinator.refresh(DHAKA)

        self.assertEqual(snapshot.location, DHAKA)
        self.assertFalse(snapshot.is_loading)
        self.assertIsNotNone(snapshot.last_refresh_time)
        for domain in Domain:
            self.assertEqual(snapshot.record_for(domain).source, RecordSource.LIVE)
        self.assertIs(self.coordinator.get_snapshot(), snapshot)
        self.assertEqual(self.coordinator.active_location, DHAKA)

    async def test_second_refresh_within_interval_is_noop(self):
        first = await self.coordinator.refresh(DHAKA)
        self.clock.now += 9.9
        second = await self.coordinator.refresh(DHAKA)

        self.assertIs(first, second)
        self.assertEqual(set(self._fetch_counts().values()), {1})

        self.clock.now += 0.2
        await self.coordinator.refresh(DHAKA)
        self.assertEqual(set(self._fetch_counts().values()), {2})

    async def test_nearby_coordinates_share_the_debounce(self):
        await self.coordinator.refresh(DHAKA)
        await self.coordinator.refresh(LocationKey(latitude=23.8121, longitude=90.4101))
        self.assertEqual(set(self._fetch_counts().values()), {1})

    async def test_concurrent_refreshes_for_same_key_share_one_cycle(self):
        self.adapters[Domain.WEATHER].delays[DHAKA.bucket(2)] = 0.1

        a, b = await asyncio.gather(self.coordinator.refresh(DHAKA), self.coordinator.refresh(DHAKA))

        self.assertIs(a, b)
        self.assertEqual(set(self._fetch_counts().values()), {1})

    async def test_debounced_rename_updates_snapshot_location(self):
        await self.coordinator.refresh(DHAKA)
        renamed = DHAKA.model_copy(update={"name": "Dhaka City"})
        seen = []
        self.coordinator.subscribe(seen.append)

        snapshot = await self.coordinator.refresh(renamed)

        self.assertEqual(set(self._fetch_counts().values()), {1})
        self.assertEqual(snapshot.location.name, "Dhaka City")
        self.assertEqual(self.coordinator.get_snapshot().location, renamed)
        self.assertEqual([s.location.name for s in seen], ["Dhaka City"])

    async def test_joined_rename_commits_latest_name(self):
        self.adapters[Domain.WEATHER].delays[DHAKA.bucket(2)] = 0.1
        renamed = DHAKA.model_copy(update={"name": "Dhaka City"})

        a, b = await asyncio.gather(self.coordinator.refresh(DHAKA), self.coordinator.refresh(renamed))

        self.assertEqual(set(self._fetch_counts().values()), {1})
        self.assertEqual(a.location.name, "Dhaka City")
        self.assertEqual(b.location, renamed)
        self.assertEqual(self.coordinator.get_snapshot().location, renamed)

    async def test_failing_adapter_does_not_block_the_others(self):
        self.adapters[Domain.TRAFFIC].fail = True

        snapshot = await self.coordinator.refresh(DHAKA)

        self.assertEqual(snapshot.traffic.source, RecordSource.SYNTHESIZED)
        self.assertEqual(len(self.adapters[Domain.TRAFFIC].offline_calls), 1)
        for domain in (Domain.WEATHER, Domain.AIR_QUALITY, Domain.RESOURCES, Domain.GREEN_SPACE):
            self.assertEqual(snapshot.record_for(domain).source, RecordSource.LIVE)

    async def test_timed_out_domain_keeps_previous_record_for_same_location(self):
        first = await self.coordinator.refresh(DHAKA)

        self.coordinator.refresh_ceiling = 0.2
        self.adapters[Domain.WEATHER].delays[DHAKA.bucket(2)] = 0.6
        self.clock.now += 60
        second = await self.coordinator.refresh(DHAKA)

        self.assertEqual(second.weather, first.weather)
        self.assertEqual(self.adapters[Domain.WEATHER].offline_calls, [])
        self.assertGreaterEqual(second.air_quality.fetched_at, first.air_quality.fetched_at)

    async def test_timed_out_domain_for_new_location_uses_offline_record(self):
        await self.coordinator.refresh(DHAKA)
        self.coordinator.refresh_ceiling = 0.2
        self.adapters[Domain.WEATHER].delays[CHITTAGONG.bucket(2)] = 0.6

        snapshot = await self.coordinator.refresh(CHITTAGONG)

        self.assertEqual(snapshot.location, CHITTAGONG)
        self.assertEqual(snapshot.weather.source, RecordSource.SYNTHESIZED)
        self.assertEqual(snapshot.weather.location, CHITTAGONG.bucket(2))

    async def test_results_for_abandoned_location_are_discarded(self):
        for adapter in self.adapters.values():
            adapter.delays[DHAKA.bucket(2)] = 0.2

        slow = asyncio.create_task(self.coordinator.refresh(DHAKA))
        await asyncio.sleep(0.05)
        fast = await self.coordinator.refresh(CHITTAGONG)
        await slow

        final = self.coordinator.get_snapshot()
        self.assertEqual(final.location, CHITTAGONG)
        self.assertIs(final, fast)
        self.assertEqual(final.weather.location, CHITTAGONG.bucket(2))
        self.assertFalse(final.is_loading)

    async def test_older_record_is_not_applied(self):
        first = await self.coordinator.refresh(DHAKA)
        self.adapters[Domain.AIR_QUALITY].fetched_at = first.air_quality.fetched_at - timedelta(minutes=5)
        self.clock.now += 60

        second = await self.coordinator.refresh(DHAKA)

        self.assertEqual(second.air_quality, first.air_quality)

    async def test_invalid_location_rejected_before_any_adapter(self):
        for bad in (
            LocationKey(latitude=91.0, longitude=0.0),
            LocationKey(latitude=0.0, longitude=-181.0),
            LocationKey(latitude=math.nan, longitude=0.0),
        ):
            with self.assertRaises(InvalidLocationError):
                await self.coordinator.refresh(bad)
        self.assertEqual(set(self._fetch_counts().values()), {0})
        self.assertIsNone(self.coordinator.get_snapshot().location)

    async def test_subscribers_see_loading_then_result(self):
        seen = []
        unsubscribe = self.coordinator.subscribe(lambda s: seen.append(s.is_loading))

        await self.coordinator.refresh(DHAKA)
        self.assertEqual(seen, [True, False])

        unsubscribe()
        self.clock.now += 60
        await self.coordinator.refresh(DHAKA)
        self.assertEqual(seen, [True, False])

    async def test_raising_subscriber_does_not_starve_others(self):
        def broken(_snapshot):
            raise RuntimeError("subscriber bug")

        seen = []
        self.coordinator.subscribe(broken)
        self.coordinator.subscribe(seen.append)

        snapshot = await self.coordinator.refresh(DHAKA)

        self.assertIs(seen[-1], snapshot)


if __name__ == "__main__":
    unittest.main()
