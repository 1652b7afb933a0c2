"""Human review workflow for generated content."""

import logging
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plumage.db import session_scope
from plumage.errors import AlreadyReviewedError, InvalidTransitionError, NotFoundError, PlumageError
from plumage.models import (
    ChangeType,
    ContentItem,
    GeneratedBundle,
    GenerationJob,
    ReviewHistoryEntry,
    ReviewStatus,
)
from plumage.models.payloads import parse_content

logger = logging.getLogger(__name__)

# Allowed source states per target state
_TRANSITIONS: dict[ReviewStatus, tuple[ReviewStatus, ...]] = {
    ReviewStatus.APPROVED: (ReviewStatus.PENDING, ReviewStatus.EDITED),
    ReviewStatus.REJECTED: (ReviewStatus.PENDING, ReviewStatus.EDITED),
    ReviewStatus.EDITED: (ReviewStatus.PENDING, ReviewStatus.EDITED),
}


def _as_uuid(item_id: UUID | str) -> UUID:
    if isinstance(item_id, UUID):
        return item_id
    try:
        return UUID(str(item_id))
    except ValueError:
        raise NotFoundError(f"Content item not found: {item_id}") from None


class ReviewWorkflow:
    """Approve, reject and edit generated content with a full audit trail.

    Every transition is a compare-and-set on the item's status plus one
    history row, committed together. Approved and rejected are terminal.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    async def materialize(
        self,
        session: AsyncSession,
        job: GenerationJob,
        bundle: GeneratedBundle,
    ) -> list[ContentItem]:
        """Create one pending content item per bundle item inside the caller's transaction."""
        items = [
            ContentItem(
                source_job_id=job.id,
                target_id=job.target_id,
                content_kind=bundle.kind.value,
                payload=payload.model_dump(mode="json"),
                confidence=getattr(payload, "confidence", None),
            )
            for payload in bundle.items
        ]
        session.add_all(items)
        await session.flush()
        return items

    async def approve(
        self,
        item_id: UUID | str,
        actor: str,
        notes: str | None = None,
    ) -> ContentItem:
        return await self._transition(
            item_id, ReviewStatus.APPROVED, ChangeType.APPROVE, actor, notes=notes
        )

    async def reject(self, item_id: UUID | str, actor: str, reason: str) -> ContentItem:
        return await self._transition(
            item_id, ReviewStatus.REJECTED, ChangeType.REJECT, actor, notes=reason
        )

    async def edit(
        self,
        item_id: UUID | str,
        new_payload: dict[str, Any],
        actor: str,
        notes: str | None = None,
        approve: bool = True,
    ) -> ContentItem:
        """Replace the payload.

        With ``approve=True`` the corrected item is published in the same
        step. Otherwise it rests in ``edited`` and stays in the review queue.
        """
        target = ReviewStatus.APPROVED if approve else ReviewStatus.EDITED
        return await self._transition(
            item_id, target, ChangeType.EDIT, actor, notes=notes, new_payload=new_payload
        )

    async def bulk_approve(
        self,
        item_ids: Iterable[UUID | str],
        actor: str,
        notes: str | None = None,
    ) -> list[dict[str, Any]]:
        """Approve each item in its own transaction and report per-item results."""
        results = []
        for item_id in dict.fromkeys(str(i) for i in item_ids):
            try:
                await self.approve(item_id, actor, notes)
                results.append({"id": item_id, "status": ReviewStatus.APPROVED.value})
            except PlumageError as exc:
                results.append({"id": item_id, "status": "error", "reason": str(exc)})
        return results

    async def bulk_reject(
        self,
        item_ids: Iterable[UUID | str],
        actor: str,
        reason: str,
    ) -> list[dict[str, Any]]:
        results = []
        for item_id in dict.fromkeys(str(i) for i in item_ids):
            try:
                await self.reject(item_id, actor, reason)
                results.append({"id": item_id, "status": ReviewStatus.REJECTED.value})
            except PlumageError as exc:
                results.append({"id": item_id, "status": "error", "reason": str(exc)})
        return results

    async def get_item(self, item_id: UUID | str) -> ContentItem:
        uid = _as_uuid(item_id)
        async with session_scope(self._session_factory) as session:
            item = await session.get(ContentItem, uid)
            if item is None:
                raise NotFoundError(f"Content item not found: {item_id}")
            return item

    async def pending_queue(
        self,
        limit: int = 50,
        content_kind: str | None = None,
    ) -> list[ContentItem]:
        """Items still awaiting a final decision, oldest first."""
        query = (
            select(ContentItem)
            .where(ContentItem.status.in_([ReviewStatus.PENDING, ReviewStatus.EDITED]))
            .order_by(ContentItem.created_at.asc())
            .limit(limit)
        )
        if content_kind:
            query = query.where(ContentItem.content_kind == content_kind)

        async with session_scope(self._session_factory) as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def history(self, item_id: UUID | str) -> list[ReviewHistoryEntry]:
        uid = _as_uuid(item_id)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(ReviewHistoryEntry)
                .where(ReviewHistoryEntry.item_id == uid)
                .order_by(ReviewHistoryEntry.created_at.asc())
            )
            return list(result.scalars().all())

    async def _transition(
        self,
        item_id: UUID | str,
        target: ReviewStatus,
        change_type: ChangeType,
        actor: str,
        notes: str | None = None,
        new_payload: dict[str, Any] | None = None,
    ) -> ContentItem:
        uid = _as_uuid(item_id)
        async with session_scope(self._session_factory) as session:
            item = await session.get(ContentItem, uid)
            if item is None:
                raise NotFoundError(f"Content item not found: {item_id}")
            if item.status not in _TRANSITIONS[target]:
                raise AlreadyReviewedError(uid, item.status, target)

            previous = item.snapshot()
            expected = item.status
            now = datetime.utcnow()

            values: dict[str, Any] = {
                "status": target,
                "updated_at": now,
                "review_notes": notes if notes is not None else item.review_notes,
            }
            # Reviewer stamps exist exactly when the decision is final
            if target.is_terminal:
                values["reviewed_by"] = actor
                values["reviewed_at"] = now
            else:
                values["reviewed_by"] = None
                values["reviewed_at"] = None

            if new_payload is not None:
                parsed = parse_content(new_payload, item.content_kind)
                values["payload"] = parsed.model_dump(mode="json")
                values["confidence"] = getattr(parsed, "confidence", item.confidence)

            result = await session.execute(
                update(ContentItem)
                .where(ContentItem.id == uid, ContentItem.status == expected)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            item = await session.get(ContentItem, uid, populate_existing=True)
            if result.rowcount == 0:
                if item.status.is_terminal:
                    raise AlreadyReviewedError(uid, item.status, target)
                raise InvalidTransitionError(uid, item.status, target)

            session.add(
                ReviewHistoryEntry(
                    item_id=uid,
                    previous_snapshot=previous,
                    new_snapshot=item.snapshot(),
                    actor=actor,
                    change_type=change_type,
                    notes=notes,
                )
            )

        logger.info(
            "Content item %s: %s -> %s by %s", uid, expected.value, target.value, actor
        )
        return item


# Global service instance
review_workflow = ReviewWorkflow()
