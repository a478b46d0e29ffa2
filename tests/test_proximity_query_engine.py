"""
Tests for ProximityQueryEngine: exact filtering, ordering, limits,
cancellation and the store-as-backstop behaviour.
"""
import asyncio
import threading
from unittest.mock import patch

import pytest

from geoproximity.exceptions import InvalidArgument, SearchCancelled
from geoproximity.models import Coordinate
from geoproximity.services.proximity_query_engine import (
    CANCEL_CHECK_INTERVAL, ProximityQueryEngine, validate_query
)
from geoproximity.services.thread_pool_service import ThreadPoolService
from tests.conftest import BANGALORE, CHENNAI


@pytest.fixture
def two_cities(registrar):
    blr = registrar.register(BANGALORE, {"name": "Bangalore"})
    maa = registrar.register(CHENNAI, {"name": "Chennai"})
    return blr, maa


class TestValidation:

    @pytest.mark.parametrize("radius", [-5, 0, float("nan"), float("inf"), True, "20000"])
    def test_bad_radius(self, engine, radius):
        with pytest.raises(InvalidArgument) as exc_info:
            engine.search(BANGALORE, radius)
        assert exc_info.value.argument == "radius_m"

    @pytest.mark.parametrize("limit", [0, -1, 2.5, True])
    def test_bad_limit(self, engine, limit):
        with pytest.raises(InvalidArgument) as exc_info:
            engine.search(BANGALORE, 1_000.0, limit=limit)
        assert exc_info.value.argument == "limit"

    def test_center_must_be_coordinate(self):
        with pytest.raises(InvalidArgument):
            validate_query((12.9, 77.5), 1_000.0)


class TestSearch:

    def test_small_radius_finds_only_self(self, engine, two_cities):
        blr, _ = two_cities

        results = engine.search(BANGALORE, 20_000.0)

        assert [r.record.id for r in results] == [blr]
        assert results[0].distance_m == 0.0
        assert results[0].record.attributes["name"] == "Bangalore"

    def test_large_radius_finds_both_in_distance_order(self, engine, two_cities):
        blr, maa = two_cities

        results = engine.search(BANGALORE, 300_000.0)

        assert [r.record.id for r in results] == [blr, maa]
        assert results[0].distance_m == 0.0
        assert results[1].distance_m == pytest.approx(BANGALORE.distance_to(CHENNAI))

    def test_empty_result_is_not_an_error(self, engine, two_cities):
        assert engine.search(Coordinate(-33.87, 151.21), 50_000.0) == []

    def test_radius_boundary_is_inclusive(self, engine, registrar):
        target = Coordinate(0.0, 0.01)
        entity_id = registrar.register(target)
        exact = Coordinate(0.0, 0.0).distance_to(target)

        assert [r.record.id for r in engine.search(Coordinate(0.0, 0.0), exact)] == [entity_id]

    def test_ties_are_ordered_by_id(self, engine, store, index):
        for entity_id in ("c", "a", "b"):
            store.put(entity_id, BANGALORE)
            index.insert(entity_id, BANGALORE)

        results = engine.search(BANGALORE, 1_000.0)

        assert [r.record.id for r in results] == ["a", "b", "c"]

    def test_limit_keeps_nearest(self, engine, registrar):
        ids = [registrar.register(Coordinate(0.0, 0.001 * i)) for i in range(10)]

        results = engine.search(Coordinate(0.0, 0.0), 5_000.0, limit=3)

        assert [r.record.id for r in results] == ids[:3]

    def test_limit_larger_than_hits(self, engine, two_cities):
        assert len(engine.search(BANGALORE, 300_000.0, limit=50)) == 2

    def test_index_false_positives_are_filtered(self, engine, registrar):
        near = registrar.register(Coordinate(0.0, 0.0))
        registrar.register(Coordinate(0.0, 0.085))

        results = engine.search(Coordinate(0.0, 0.0), 100.0)

        assert [r.record.id for r in results] == [near]

    def test_ids_missing_from_store_are_skipped(self, engine, store, index):
        store.put("real", BANGALORE)
        index.insert("real", BANGALORE)
        index.insert("ghost", BANGALORE)

        results = engine.search(BANGALORE, 1_000.0)

        assert [r.record.id for r in results] == ["real"]
        assert index.get_stats()["inconsistencies"] == 1

    def test_store_coordinate_is_authoritative(self, engine, store, index):
        # Index still places the id in Bangalore but the store says Chennai
        store.put("moved", CHENNAI)
        index.insert("moved", BANGALORE)

        assert engine.search(BANGALORE, 20_000.0) == []


class TestCancellation:

    def test_pre_set_event_cancels(self, engine, two_cities):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(SearchCancelled):
            engine.search(BANGALORE, 300_000.0, cancel_event=cancel)

    def test_cancel_during_scan_discards_results(self, engine, store, index):
        for i in range(CANCEL_CHECK_INTERVAL * 2):
            entity_id = f"id-{i:04d}"
            store.put(entity_id, BANGALORE)
            index.insert(entity_id, BANGALORE)

        cancel = threading.Event()
        original_find = store.find

        def find_and_cancel(entity_id):
            cancel.set()
            return original_find(entity_id)

        with patch.object(store, "find", side_effect=find_and_cancel):
            with pytest.raises(SearchCancelled) as exc_info:
                engine.search(BANGALORE, 1_000.0, cancel_event=cancel)

        assert exc_info.value.scanned == CANCEL_CHECK_INTERVAL

    def test_unset_event_does_not_interfere(self, engine, two_cities):
        assert len(engine.search(BANGALORE, 300_000.0, cancel_event=threading.Event())) == 2


class TestSearchAsync:

    @pytest.mark.asyncio
    async def test_runs_on_thread_pool(self, index, store, registrar):
        pool = ThreadPoolService(cpu_workers=2)
        engine = ProximityQueryEngine(index, store, pool)
        blr = registrar.register(BANGALORE)
        try:
            results = await engine.search_async(BANGALORE, 20_000.0)
        finally:
            pool.close()

        assert [r.record.id for r in results] == [blr]

    @pytest.mark.asyncio
    async def test_default_executor_without_pool(self, engine, two_cities):
        results = await engine.search_async(BANGALORE, 300_000.0, limit=1)
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_validation_happens_before_dispatch(self, engine):
        with pytest.raises(InvalidArgument):
            await engine.search_async(BANGALORE, -5)

    @pytest.mark.asyncio
    async def test_task_cancellation_sets_event(self, engine):
        started = threading.Event()
        seen = {}

        def slow_search(center, radius_m, limit, cancel_event):
            seen["event"] = cancel_event
            started.set()
            cancel_event.wait(timeout=5)
            raise SearchCancelled()

        with patch.object(engine, "search", side_effect=slow_search):
            task = asyncio.create_task(engine.search_async(BANGALORE, 1_000.0))
            while not started.is_set():
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert seen["event"].is_set()
