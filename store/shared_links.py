"""LinkStorage — shareable, expiring snapshots of conversations.

One record per owner: putting again for the same owner updates the stored
data in place. Reads skip deleted and expired records and bump a read counter.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel

from store.database import get_db

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_SECONDS = 60 * 60 * 24 * 30  # 30 days
DATA_TYPE_CHAT_V1 = "CHAT_V1"


class LinkPutSuccess(BaseModel):
    type: Literal["success"] = "success"
    object_id: str
    owner_id: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    deletion_key: str


class LinkGetSuccess(BaseModel):
    type: Literal["success"] = "success"
    data_type: str
    data_object: dict[str, Any]
    study_id: Optional[str] = None
    search_topic: Optional[str] = None
    stored_at: datetime
    expires_at: Optional[datetime] = None


class LinkError(BaseModel):
    type: Literal["error"] = "error"
    error: str


class LinkDeleteResult(BaseModel):
    type: Literal["success", "error"]
    error: Optional[str] = None


class LinkStorage:
    """Shared-link records persisted in the link_storage table."""

    def __init__(self, db_path: str = "data/chats.db"):
        self.db_path = db_path

    async def put(
        self,
        owner_id: str,
        data_object: dict[str, Any],
        study_id: str | None = None,
        search_topic: str | None = None,
        expires_seconds: int | None = None,
        data_type: str = DATA_TYPE_CHAT_V1,
    ) -> LinkPutSuccess:
        """Create or update the owner's record. expires_seconds=0 never expires."""
        # Values embedded in the data object win over the explicit arguments
        final_study_id = data_object.get("study_id") or study_id or None
        final_search_topic = data_object.get("search_topic") or search_topic or None
        payload = json.dumps(data_object)

        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT object_id, created_at, expires_at, deletion_key FROM link_storage WHERE owner_id = ?",
                (owner_id,),
            )
            row = await cursor.fetchone()

            if row is None:
                object_id = str(uuid4())
                created_at = datetime.now(timezone.utc)
                expires_at = None
                if expires_seconds != 0:
                    expires_at = created_at + timedelta(
                        seconds=expires_seconds or DEFAULT_EXPIRES_SECONDS
                    )
                deletion_key = str(uuid4())
                await db.execute(
                    """INSERT INTO link_storage
                       (object_id, owner_id, data_type, data, data_size, study_id,
                        search_topic, created_at, expires_at, deletion_key, is_deleted, read_count)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0)""",
                    (
                        object_id, owner_id, data_type, payload, len(payload),
                        final_study_id, final_search_topic, created_at.isoformat(),
                        expires_at.isoformat() if expires_at else None, deletion_key,
                    ),
                )
                logger.info("Shared link created for owner %s: %s", owner_id, object_id)
            else:
                object_id = row["object_id"]
                created_at = datetime.fromisoformat(row["created_at"])
                expires_at = datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None
                deletion_key = row["deletion_key"]
                await db.execute(
                    """UPDATE link_storage
                       SET data = ?, data_size = ?, study_id = ?, search_topic = ?
                       WHERE owner_id = ?""",
                    (payload, len(payload), final_study_id, final_search_topic, owner_id),
                )
                logger.info("Shared link updated for owner %s: %s", owner_id, object_id)
            await db.commit()

        return LinkPutSuccess(
            object_id=object_id,
            owner_id=owner_id,
            created_at=created_at,
            expires_at=expires_at,
            deletion_key=deletion_key,
        )

    async def get(
        self,
        object_id: str,
        owner_id: str | None = None,
    ) -> Union[LinkGetSuccess, LinkError]:
        """Read a live record (not deleted, not expired) and count the read."""
        now = datetime.now(timezone.utc).isoformat()
        query = """SELECT * FROM link_storage
                   WHERE object_id = ? AND is_deleted = 0
                     AND (expires_at IS NULL OR expires_at > ?)"""
        params: list[Any] = [object_id, now]
        if owner_id:
            query += " AND owner_id = ?"
            params.append(owner_id)

        async with get_db(self.db_path) as db:
            cursor = await db.execute(query, params)
            row = await cursor.fetchone()
            if row is None:
                return LinkError(error="Not found")

            try:
                data_object = json.loads(row["data"])
            except (TypeError, json.JSONDecodeError):
                data_object = None
            if not isinstance(data_object, dict):
                return LinkError(error="Invalid data")

            await db.execute(
                "UPDATE link_storage SET read_count = read_count + 1 WHERE object_id = ?",
                (object_id,),
            )
            await db.commit()

        return LinkGetSuccess(
            data_type=row["data_type"],
            data_object=data_object,
            study_id=data_object.get("study_id") or row["study_id"],
            search_topic=data_object.get("search_topic") or row["search_topic"],
            stored_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None,
        )

    async def mark_deleted(
        self,
        object_id: str,
        deletion_key: str,
        owner_id: str | None = None,
    ) -> LinkDeleteResult:
        """Soft-delete a record. Succeeds only if exactly one live record matched."""
        query = """UPDATE link_storage SET is_deleted = 1, deleted_at = ?
                   WHERE object_id = ? AND deletion_key = ? AND is_deleted = 0"""
        params: list[Any] = [datetime.now(timezone.utc).isoformat(), object_id, deletion_key]
        if owner_id:
            query += " AND owner_id = ?"
            params.append(owner_id)

        async with get_db(self.db_path) as db:
            cursor = await db.execute(query, params)
            await db.commit()
            success = cursor.rowcount == 1

        if success:
            logger.info("Shared link deleted: %s", object_id)
        return LinkDeleteResult(
            type="success" if success else "error",
            error=None if success else "Not found",
        )

    async def read_count(self, object_id: str) -> int:
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT read_count FROM link_storage WHERE object_id = ?", (object_id,),
            )
            row = await cursor.fetchone()
            return row["read_count"] if row else 0
