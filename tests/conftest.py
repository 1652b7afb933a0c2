"""Pytest configuration and fixtures for plumage tests."""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Callable

# Set test environment variables BEFORE importing plumage modules
# This ensures the Settings singleton loads with test values
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="plumage-test-"))
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{_TEST_DB_DIR / 'plumage_test.db'}"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["OPENAI_API_KEY"] = "test-openai-key"
os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"

import pytest
from sqlmodel import SQLModel

import plumage.models  # noqa: F401
from plumage.db import close_db, engine, init_db, session_scope
from plumage.models import ContentKind, ContentItem
from plumage.providers import GenerationRequest, ProviderRegistry, ProviderResult
from plumage.services import CacheService, JobOrchestrator, ReviewWorkflow, StatsAggregator
from tests.factories import ContentItemFactory, annotation_bundle, fill_in_blank_bundle


class FakeProvider:
    """Scripted generation provider.

    Returns a valid bundle unless told otherwise. Failures can be queued
    per target (raised once each, in order) or made permanent.
    """

    def __init__(self, name: str = "fake-vision", kind: ContentKind = ContentKind.VISION_ANNOTATION):
        self.name = name
        self.kind = kind
        self.calls: list[str] = []
        self.call_times: list[tuple[str, float]] = []
        self.delay = 0.0
        self.delays: dict[str, float] = {}
        self.payload_override = None
        self._queued: dict[str, list[Exception]] = {}
        self._permanent: dict[str, Callable[[], Exception]] = {}

    def fail_next(self, target_id: str, *errors: Exception) -> None:
        self._queued.setdefault(target_id, []).extend(errors)

    def fail_always(self, target_id: str, make_error: Callable[[], Exception]) -> None:
        self._permanent[target_id] = make_error

    async def generate(self, request: GenerationRequest) -> ProviderResult:
        self.calls.append(request.target_id)
        self.call_times.append((request.target_id, asyncio.get_running_loop().time()))
        delay = self.delays.get(request.target_id, self.delay)
        if delay:
            await asyncio.sleep(delay)

        if request.target_id in self._permanent:
            raise self._permanent[request.target_id]()
        queued = self._queued.get(request.target_id)
        if queued:
            raise queued.pop(0)

        if self.payload_override is not None:
            payload = self.payload_override
        elif self.kind == ContentKind.VISION_ANNOTATION:
            payload = annotation_bundle(2)
        else:
            payload = fill_in_blank_bundle(2)
        return ProviderResult(payload=payload, cost_usd=0.003, duration_ms=12)


@pytest.fixture
async def db():
    """Fresh schema for every test; connections are disposed afterwards."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await init_db()
    yield engine
    await close_db()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def exercise_provider() -> FakeProvider:
    return FakeProvider(name="fake-exercises", kind=ContentKind.FILL_IN_BLANK)


@pytest.fixture
def registry(fake_provider, exercise_provider) -> ProviderRegistry:
    return ProviderRegistry([fake_provider, exercise_provider])


@pytest.fixture
def cache(db) -> CacheService:
    return CacheService(ttl_seconds=3600, max_entries=100, single_flight_wait_seconds=5)


@pytest.fixture
def review(db) -> ReviewWorkflow:
    return ReviewWorkflow()


@pytest.fixture
def make_orchestrator(registry, cache, review):
    """Build an orchestrator with zero backoff; override any setting per test."""

    def _make(**overrides) -> JobOrchestrator:
        options = {
            "registry": registry,
            "cache": cache,
            "review": review,
            "concurrency": 3,
            "max_attempts": 3,
            "backoff_base": 0.0,
            "rate_limit_backoff": 0.0,
            "timeout": 2.0,
        }
        options.update(overrides)
        return JobOrchestrator(**options)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> JobOrchestrator:
    return make_orchestrator()


@pytest.fixture
def stats(cache) -> StatsAggregator:
    return StatsAggregator(cache=cache)


@pytest.fixture
def vision_request() -> Callable[..., GenerationRequest]:
    """Build a vision annotation request for the fake provider."""

    def _make(target_id: str = "cardinal-001", **params) -> GenerationRequest:
        return GenerationRequest(
            target_id=target_id,
            provider="fake-vision",
            content_kind=ContentKind.VISION_ANNOTATION,
            params={"image_url": f"https://images.example.org/{target_id}.jpg", **params},
        )

    return _make


@pytest.fixture
def make_items(db):
    """Insert pending content items and return them."""

    async def _make(count: int = 1, **overrides) -> list[ContentItem]:
        items = [ContentItemFactory(**overrides) for _ in range(count)]
        async with session_scope() as session:
            session.add_all(items)
        return items

    return _make
