"""Async SQLite database helper for conversation snapshots and shared links."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- Conversations (one row per dialogue or memo)
CREATE TABLE IF NOT EXISTS conversations (
    conversation_id TEXT PRIMARY KEY,
    phase TEXT NOT NULL DEFAULT 'dialogue',
    topic TEXT,
    standpoint TEXT DEFAULT 'unset',
    strategy TEXT DEFAULT 'unset',
    initial_system_message TEXT,
    paired_memo_id TEXT,
    paired_dialogue_id TEXT,
    study_id TEXT,
    auto_title TEXT,
    user_title TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

-- Messages, ordered by position within their conversation
CREATE TABLE IF NOT EXISTS messages (
    message_id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    role TEXT NOT NULL,
    text TEXT NOT NULL,
    sender TEXT,
    origin_llm TEXT,
    purpose_id TEXT,
    retrieved_context JSON,
    follow_ups JSON,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP,
    FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id)
);

-- Shared links (exported conversation snapshots)
CREATE TABLE IF NOT EXISTS link_storage (
    object_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL UNIQUE,
    data_type TEXT NOT NULL DEFAULT 'CHAT_V1',
    data JSON NOT NULL,
    data_size INTEGER DEFAULT 0,
    study_id TEXT,
    search_topic TEXT,
    created_at TIMESTAMP NOT NULL,
    expires_at TIMESTAMP,
    deletion_key TEXT NOT NULL,
    is_deleted BOOLEAN DEFAULT FALSE,
    deleted_at TIMESTAMP,
    read_count INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, position);
CREATE INDEX IF NOT EXISTS idx_conversations_study ON conversations(study_id);
"""


async def init_database(db_path: str) -> None:
    """Create all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.executescript(SCHEMA_SQL)
        await db.commit()
    logger.info("Database initialized at %s", db_path)


@asynccontextmanager
async def get_db(db_path: str):
    """Async context manager for aiosqlite connection."""
    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    try:
        yield db
    finally:
        await db.close()
