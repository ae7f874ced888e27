from __future__ import annotations

import logging

import pytest

from fplcontest.settlement.models import Fixture
from fplcontest.settlement.service import SettlementService
from fplcontest.settlement.stores import InMemoryContestStore

from .factories import SETTLED_AT, make_fixture


class RecordingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def messages(self) -> list[str]:
        return [record.getMessage() for record in self.records]


@pytest.fixture
def audit_records():
    logger = logging.getLogger("fplcontest.settlement.audit")
    handler = RecordingHandler()
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        yield handler
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous)


@pytest.fixture
def store() -> InMemoryContestStore:
    return InMemoryContestStore()


@pytest.fixture
def service(store: InMemoryContestStore) -> SettlementService:
    return SettlementService(store, clock=lambda: SETTLED_AT)


@pytest.fixture
def featured_fixture() -> Fixture:
    return make_fixture(101, 13, 1, score=(2, 1), scorers=[(13, 328), (13, 328), (1, 17)])
