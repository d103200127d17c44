"""Shared test fixtures."""

import pytest_asyncio

from sqlweave.sqlite import SqliteConnection

SCHEMA = [
    """CREATE TABLE "user" (
        user_id BLOB PRIMARY KEY,
        username TEXT NOT NULL UNIQUE
    )""",
    """CREATE TABLE post (
        post_id BLOB PRIMARY KEY,
        user_id BLOB NOT NULL REFERENCES "user" (user_id),
        content TEXT NOT NULL
    )""",
    """CREATE TABLE comment (
        comment_id BLOB PRIMARY KEY,
        post_id BLOB NOT NULL REFERENCES post (post_id),
        user_id BLOB NOT NULL REFERENCES "user" (user_id),
        content TEXT NOT NULL
    )""",
]


@pytest_asyncio.fixture
async def conn():
    """In-memory SQLite connection."""
    connection = await SqliteConnection.connect("sqlite::memory:")
    yield connection
    await connection.close()


@pytest_asyncio.fixture
async def blog(conn):
    """In-memory SQLite connection with the user/post/comment schema."""
    for statement in SCHEMA:
        await conn.backend.query(statement).execute(conn)
    return conn
