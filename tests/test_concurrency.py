"""
Tests for Concurrent Readers, Rebuilds and Session Sweeps.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from semgraph.engine import KnowledgeGraphEngine
from semgraph.knowledge.schemas import Entity, Relationship
from semgraph.reasoning.session_manager import SessionManager
from tests.conftest import T0

REBUILDS = 20
READERS = 3


def user(content: str) -> dict:
    return {"role": "user", "content": content}


class TestRebuildUnderLoad:
    """Readers running while the graph is rebuilt."""

    def test_readers_see_a_single_generation(
        self,
        engine: KnowledgeGraphEngine,
        scenario_entities: list[Entity],
        scenario_relationships: list[Relationship],
        corpus_entities: list[dict],
        corpus_relationships: list[dict],
    ) -> None:
        """Test every read reflects exactly one of the snapshots ever published."""
        scenario_ids = frozenset(e.id for e in scenario_entities)
        corpus_ids = frozenset(e["id"] for e in corpus_entities)
        engine.build_from_entities(scenario_entities, scenario_relationships)
        done = threading.Event()

        def rebuild() -> list[int]:
            generations = []
            try:
                for i in range(REBUILDS):
                    if i % 2:
                        report = engine.build_from_entities(scenario_entities, scenario_relationships)
                    else:
                        report = engine.build_from_entities(corpus_entities, corpus_relationships)
                    generations.append(report.generation)
            finally:
                done.set()
            return generations

        def read() -> list[frozenset[str]]:
            seen = []
            while True:
                clusters = engine.cluster_nodes(0.3)
                seen.append(frozenset(m for group in clusters.values() for m in group))
                hits = engine.semantic_search("price imbalance candle", 50)
                seen.append(frozenset(hit.node.id for hit in hits))
                if done.is_set():
                    return seen

        with ThreadPoolExecutor(max_workers=READERS + 1) as pool:
            readers = [pool.submit(read) for _ in range(READERS)]
            generations = pool.submit(rebuild).result()
            observed = [ids for reader in readers for ids in reader.result()]

        assert generations == list(range(2, REBUILDS + 2))
        assert observed
        assert set(observed) <= {scenario_ids, corpus_ids}

    def test_generation_never_goes_backwards(
        self,
        engine: KnowledgeGraphEngine,
        scenario_entities: list[Entity],
    ) -> None:
        done = threading.Event()

        def rebuild() -> None:
            try:
                for _ in range(REBUILDS):
                    engine.build_from_entities(scenario_entities, [])
            finally:
                done.set()

        def watch() -> list[int]:
            seen = [engine.generation]
            while not done.is_set():
                seen.append(engine.generation)
            return seen

        with ThreadPoolExecutor(max_workers=2) as pool:
            watcher = pool.submit(watch)
            pool.submit(rebuild).result()
            seen = watcher.result()

        assert seen == sorted(seen)
        assert engine.generation == REBUILDS


class TestSweepRacingUpdates:
    """Expiry sweeps running while sessions are being updated."""

    def test_sweep_and_update_interleave_cleanly(self, session_manager: SessionManager) -> None:
        """Test a racing sweep never leaves a half-updated session behind."""
        sweep_at = T0 + timedelta(hours=2)
        done = threading.Event()

        def update(worker: int) -> list[tuple[int, int, float]]:
            results = []
            history: list[dict] = []
            for turn in range(REBUILDS):
                history.append(user(f"What is a Fair Value Gap? ({turn})"))
                session = session_manager.create_or_update(f"chat-{worker}", history, now=T0)
                results.append((len(history), session.processed_messages, session.confidence_score))
            return results

        def sweep() -> int:
            removed = 0
            while not done.is_set():
                removed += session_manager.clear_expired(sweep_at)
            return removed

        with ThreadPoolExecutor(max_workers=READERS + 1) as pool:
            sweeper = pool.submit(sweep)
            workers = [pool.submit(update, worker) for worker in range(READERS)]
            try:
                results = [row for worker in workers for row in worker.result()]
            finally:
                done.set()
            sweeper.result()

        assert len(results) == READERS * REBUILDS
        assert all(sent == processed for sent, processed, _ in results)
        assert all(0.0 <= confidence <= 1.0 for _, _, confidence in results)

        # Whatever survived the race is stale at the sweep time and fresh after an update
        session_manager.clear_expired(sweep_at)
        assert all(session_manager.get(f"chat-{w}", sweep_at) is None for w in range(READERS))
        session = session_manager.create_or_update("chat-0", [user("What is an Order Block?")], now=sweep_at)
        assert session.processed_messages == 1
        assert session_manager.clear_expired(sweep_at) == 0
