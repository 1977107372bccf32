"""Shared fixtures"""
from itertools import chain
from typing import Iterable

import pytest

from pocket_ipam.core.identifiers import new_id
from pocket_ipam.core.storage import IpamStore
from pocket_ipam.utils.logging import reset_logging


def scripted_ids(*ids: str, then: Iterable[str] = ()):
    """ID factory that hands out ``ids`` in order, then random ones."""
    sequence = chain(ids, then)

    def factory() -> str:
        return next(sequence, None) or new_id()

    return factory


@pytest.fixture(autouse=True)
def _clean_logging():
    yield
    reset_logging()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "ipam.db"


@pytest.fixture
def store(db_path):
    store = IpamStore(db_path)
    store.init_db()
    return store
