"""Integration tests for the MCP tool functions."""

import asyncio
from uuid import uuid4

import pytest

from plumage.errors import TransientProviderError
from plumage.tools import (
    batch_cancel,
    batch_start,
    batch_status,
    cache_maintenance,
    content_generate,
    pipeline_stats,
    review_approve,
    review_bulk_approve,
    review_edit,
    review_history,
    review_queue,
    review_reject,
)
from tests.factories import AnnotationPayloadFactory


@pytest.fixture
def tool_orchestrator(monkeypatch, orchestrator):
    """Route the generation and batch tools through the test orchestrator."""
    monkeypatch.setattr("plumage.tools.generate.job_orchestrator", orchestrator)
    monkeypatch.setattr("plumage.tools.batch.job_orchestrator", orchestrator)
    return orchestrator


class TestContentGenerate:
    """Tests for content_generate tool."""

    async def test_generated_then_cached(self, tool_orchestrator, fake_provider):
        """The second identical call is served from cache."""
        params = {"image_url": "https://images.example.org/cardinal.jpg", "species": "Cardinal"}

        first = await content_generate("cardinal-001", "fake-vision", "vision_annotation", params)
        second = await content_generate(
            "cardinal-001", "fake-vision", "vision_annotation", dict(reversed(params.items()))
        )

        assert first["status"] == "generated"
        assert len(first["content_item_ids"]) == 2
        assert first["job"]["status"] == "completed"
        assert second["status"] == "cached"
        assert second["cache_key"] == first["cache_key"]
        assert second["job"] is None
        assert len(fake_provider.calls) == 1

    async def test_invalid_content_kind(self, tool_orchestrator):
        result = await content_generate("cardinal-001", "fake-vision", "crossword")
        assert result["status"] == "error"
        assert "Invalid request" in result["reason"]

    async def test_unknown_provider(self, tool_orchestrator):
        result = await content_generate("cardinal-001", "dall-e", "vision_annotation")
        assert result["status"] == "error"
        assert "dall-e" in result["reason"]

    async def test_generation_failure(self, tool_orchestrator, fake_provider):
        """Exhausted retries surface the error kind."""
        fake_provider.fail_always("cardinal-001", lambda: TransientProviderError("upstream 503"))

        result = await content_generate("cardinal-001", "fake-vision", "vision_annotation")

        assert result == {"status": "error", "reason": "upstream 503", "error_kind": "transient"}


class TestBatchTools:
    """Tests for batch_start, batch_status and batch_cancel tools."""

    async def test_batch_round_trip(self, tool_orchestrator):
        """A queued batch runs in the background and reports progress."""
        items = [
            {"target_id": f"bird-{i}", "provider": "fake-vision", "content_kind": "vision_annotation"}
            for i in range(3)
        ]

        started = await batch_start(items, concurrency=2)
        assert started["status"] == "queued"
        batch_id = started["batch"]["batch_id"]

        await asyncio.gather(*tool_orchestrator._tasks)

        status = await batch_status(batch_id)
        assert status["status"] == "completed"
        assert status["progress"]["successful"] == 3
        assert status["progress"]["percentage"] == 100.0
        assert status["errors"] == []

        cancelled = await batch_cancel(batch_id)
        assert cancelled == {"status": "error", "reason": "Batch already completed"}

    async def test_invalid_items(self, tool_orchestrator):
        assert (await batch_start([]))["status"] == "error"

        result = await batch_start([{"target_id": "bird-1", "provider": "fake-vision"}])
        assert result["status"] == "error"
        assert result["reason"].startswith("Invalid item 0")

    async def test_unknown_batch(self, tool_orchestrator):
        assert (await batch_status("not-a-uuid"))["status"] == "error"
        assert (await batch_status(str(uuid4())))["status"] == "error"
        assert (await batch_cancel(str(uuid4())))["status"] == "error"


class TestReviewTools:
    """Tests for review tools."""

    async def test_second_decision_is_an_error(self, make_items):
        [item] = await make_items()

        approved = await review_approve(str(item.id), "maria")
        rejected = await review_reject(str(item.id), "jose", "wrong bird")

        assert approved["status"] == "approved"
        assert approved["item"]["reviewed_by"] == "maria"
        assert rejected["status"] == "error"
        assert "already reviewed" in rejected["reason"]

    async def test_edit_and_history(self, make_items):
        """An unapproved edit stays queued and shows in the history."""
        [item] = await make_items()

        edited = await review_edit(
            str(item.id), "maria", AnnotationPayloadFactory(spanish_term="la cresta"), approve=False
        )
        assert edited["status"] == "edited"

        queue = await review_queue()
        assert queue["count"] == 1
        assert queue["items"][0]["payload"]["spanish_term"] == "la cresta"

        history = await review_history(str(item.id))
        assert [h["change_type"] for h in history["history"]] == ["edit"]

    async def test_bulk_summary(self, make_items):
        items = await make_items(2)

        result = await review_bulk_approve([str(i.id) for i in items] + ["missing"], "maria")

        assert result["status"] == "completed"
        assert result["succeeded"] == 2
        assert result["failed"] == 1

    async def test_history_of_unknown_item(self, db):
        assert (await review_history(str(uuid4())))["status"] == "error"


class TestStatsTools:
    """Tests for pipeline_stats and cache_maintenance tools."""

    async def test_scopes(self, make_items):
        await make_items(2)

        queue = await pipeline_stats("queue")
        assert queue["state"] == "pending"
        assert queue["pending_items"] == 2

        summary = await pipeline_stats()
        assert summary["review"]["total"] == 2

        assert (await pipeline_stats("stuck"))["count"] == 0
        assert (await pipeline_stats("snapshot"))["status"] == "error"

    async def test_unknown_scope(self, db):
        result = await pipeline_stats("everything")
        assert result["status"] == "error"
        assert "Unknown scope" in result["reason"]

    async def test_maintenance(self, db):
        """A maintenance run leaves a snapshot behind."""
        assert (await cache_maintenance(max_entries=-1))["status"] == "error"

        result = await cache_maintenance(max_entries=10)
        assert result["status"] == "completed"

        snapshot = await pipeline_stats("snapshot")
        assert snapshot["id"] == result["snapshot_id"]
