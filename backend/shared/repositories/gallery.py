"""Read-side repository for photos and comments."""

from __future__ import annotations

import logging

import asyncpg

from shared.models.gallery import Comment, Photo

logger = logging.getLogger(__name__)

_PHOTO_COLUMNS = "id, channel_id, url, title, tip_units_total, likes_count, created_at"
_COMMENT_COLUMNS = (
    "id, channel_id, photo_id, user_id, message, display_name, hidden, "
    "ledger_entry_id, created_at"
)


class GalleryRepository:
    """Photo feed and comment moderation queries."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def list_photos(self, channel_id: str) -> list[Photo]:
        """Return a channel's photos, newest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_PHOTO_COLUMNS} FROM photos WHERE channel_id = $1 ORDER BY id DESC",
                channel_id,
            )
            return [Photo(**dict(r)) for r in rows]

    async def list_comments(
        self,
        channel_id: str,
        photo_id: int | None = None,
        limit: int = 50,
    ) -> list[Comment]:
        """Visible comments for a channel, optionally for one photo."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COMMENT_COLUMNS} FROM comments
                WHERE channel_id = $1
                  AND hidden = FALSE
                  AND ($2::bigint IS NULL OR photo_id = $2)
                ORDER BY id DESC
                LIMIT $3
                """,
                channel_id,
                photo_id,
                limit,
            )
            return [Comment(**dict(r)) for r in rows]

    async def set_comment_hidden(
        self, channel_id: str, comment_id: int, hidden: bool
    ) -> Comment | None:
        """Hide or restore a comment. Returns None when it is not in the channel."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE comments SET hidden = $3
                WHERE id = $1 AND channel_id = $2
                RETURNING {_COMMENT_COLUMNS}
                """,
                comment_id,
                channel_id,
                hidden,
            )
            return Comment(**dict(row)) if row else None
