import random

import pytest

from beatbattles.messaging.router import MessageRouter
from beatbattles.rooms.repository import RoomRepository
from beatbattles.rooms.service import RoomLifecycleService
from beatbattles.session.manager import SessionManager


@pytest.fixture
def repository():
    return RoomRepository()


@pytest.fixture
def service(repository):
    return RoomLifecycleService(repository, rng=random.Random(1234))


@pytest.fixture
def manager(service):
    return SessionManager(service, max_rooms=5, max_capacity=12, reap_interval_seconds=0)


@pytest.fixture
def router(manager):
    return MessageRouter(manager)
