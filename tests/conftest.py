"""Shared fixtures."""

import pytest

from fakes import FIXED_NOW, FakeLabStore, FixedClock, RecordingSleeper

from labdesk.services.cache import CacheConfig, build_participant_cache, build_user_cache
from labdesk.services.enrichment import AppointmentEnricher
from labdesk.services.status_store import InMemoryStatusStore
from labdesk.services.workflow import AppointmentWorkflow
from labdesk.utils.retry import RetryPolicy


@pytest.fixture
def store():
    """Fake backend with two users, both services and a doctor."""
    store = FakeLabStore()
    store.add_user("USER_1", "Nguyen Van A")
    store.add_user("USER_2", "Tran Thi B")
    store.add_services()
    store.add_doctor()
    return store


@pytest.fixture
def sleeper():
    return RecordingSleeper()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def cache_config():
    """Cache settings with instant retries."""
    return CacheConfig(
        ttl=300.0,
        fallback_ttl=30.0,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0, attempt_timeout=None),
        inter_batch_delay=0.0,
    )


@pytest.fixture
def enricher(store, cache_config, sleeper):
    user_cache = build_user_cache(store, cache_config, sleep=sleeper)
    participant_cache = build_participant_cache(store, cache_config, sleep=sleeper)
    return AppointmentEnricher(store, user_cache, participant_cache)


@pytest.fixture
def status_store():
    return InMemoryStatusStore()


@pytest.fixture
def workflow(status_store):
    return AppointmentWorkflow(status_store, clock=lambda: FIXED_NOW)
