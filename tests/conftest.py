"""Shared fixtures: a store in tmp_path and a manager with a controllable clock."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from memgraph.manager import KnowledgeGraphManager
from memgraph.models import Entity
from memgraph.store import GraphStore

START = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_entity(name: str, entity_type: str = "person", observations: list[str] | None = None,
                when: datetime = START) -> Entity:
    return Entity.new(name, entity_type, observations or [], when=when.isoformat())


@pytest.fixture
def graph_path(tmp_path):
    return tmp_path / "memory.json"


@pytest.fixture
def store(graph_path):
    return GraphStore(graph_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(store, clock):
    return KnowledgeGraphManager(store, clock=clock)
