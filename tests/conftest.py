"""
Shared fixtures: an in-memory store seeded with a small directory and chat
services for Ash (a1), Misty (b1) and Brock (b2) on a deterministic clock.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from vaultchat.auth.session import StaticSession
from vaultchat.chat.service import ChatService
from vaultchat.core.memory_store import MemoryStore
from vaultchat.models.user_models import Principal


ASH = Principal(id="a1", display_name="Ash", email="ash@pallet.town")
MISTY = Principal(id="b1", display_name="Misty", email="Misty@Cerulean.gym")
BROCK = Principal(id="b2", display_name="Brock", email="brock@pewter.gym")

DIRECTORY = {
    "users/a1": {
        "email": "ash@pallet.town",
        "searchableEmail": "ash@pallet.town",
        "name": "Ash",
        "searchableName": "ash",
    },
    "users/b1": {
        "email": "Misty@Cerulean.gym",
        "searchableEmail": "misty@cerulean.gym",
        "name": "Misty",
        "searchableName": "misty",
    },
    "users/b2": {
        "email": "brock@pewter.gym",
        "searchableEmail": "brock@pewter.gym",
        "name": "Brock",
        "searchableName": "brock",
    },
}


class Clock:
    """Ticks one second per call."""

    def __init__(self, start=datetime(2025, 3, 29, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class Ids:
    """Hands out the preset ids first, then id1, id2, ..."""

    def __init__(self, *preset):
        self._ids = itertools.chain(preset, (f"id{n}" for n in itertools.count(1)))

    def __call__(self):
        return next(self._ids)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def ids():
    return Ids("c1")


@pytest_asyncio.fixture
async def store():
    store = MemoryStore()
    for path, data in DIRECTORY.items():
        await store.set(path, data)
    return store


@pytest_asyncio.fixture
async def make_service(store, clock, ids):
    services = []

    def make(principal=None, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("id_factory", ids)
        service = ChatService(store, StaticSession(principal), **kwargs)
        services.append(service)
        return service

    yield make

    for service in services:
        await service.close()


@pytest.fixture
def ash(make_service):
    return make_service(ASH)


@pytest.fixture
def misty(make_service):
    return make_service(MISTY)


@pytest.fixture
def brock(make_service):
    return make_service(BROCK)


@pytest.fixture
def anonymous(make_service):
    return make_service(None)
