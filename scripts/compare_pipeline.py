#!/usr/bin/env python3
"""Time the blog insert pipeline against the same inserts in a transaction.

Usage:
    python scripts/compare_pipeline.py [database_url] [--rounds N] [--sync each|batch]

Creates temporary user/post/comment tables on the target database, then for
each round inserts one user, one post and one comment: once through a
three-statement pipeline and once as three statements inside a transaction.
"""

import argparse
import asyncio
import logging
import sys
import time
import uuid

from sqlweave import Connection, Pipeline, SyncMode, connect
from sqlweave.config import get_database_url, get_log_level
from sqlweave.placeholders import PlaceholderStyle

logger = logging.getLogger("compare_pipeline")

SCHEMA = {
    PlaceholderStyle.DOLLAR: [
        'CREATE TEMP TABLE "user" (user_id UUID PRIMARY KEY, username TEXT NOT NULL)',
        "CREATE TEMP TABLE post (post_id UUID PRIMARY KEY,"
        ' user_id UUID NOT NULL REFERENCES "user" (user_id), content TEXT NOT NULL)',
        "CREATE TEMP TABLE comment (comment_id UUID PRIMARY KEY,"
        " post_id UUID NOT NULL REFERENCES post (post_id),"
        ' user_id UUID NOT NULL REFERENCES "user" (user_id), content TEXT NOT NULL)',
    ],
    PlaceholderStyle.QMARK: [
        'CREATE TEMP TABLE "user" (user_id BLOB PRIMARY KEY, username TEXT NOT NULL)',
        "CREATE TEMP TABLE post (post_id BLOB PRIMARY KEY,"
        ' user_id BLOB NOT NULL REFERENCES "user" (user_id), content TEXT NOT NULL)',
        "CREATE TEMP TABLE comment (comment_id BLOB PRIMARY KEY,"
        " post_id BLOB NOT NULL REFERENCES post (post_id),"
        ' user_id BLOB NOT NULL REFERENCES "user" (user_id), content TEXT NOT NULL)',
    ],
}


def _params(style: PlaceholderStyle, count: int) -> str:
    if style is PlaceholderStyle.DOLLAR:
        return ", ".join(f"${i}" for i in range(1, count + 1))
    return ", ".join("?" * count)


def blog_queries(conn: Connection) -> list:
    """Build the three inserts for a fresh user, post and comment."""
    backend = conn.backend
    style = backend.placeholder_style
    user_id, post_id, comment_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    return [
        backend.query(f'INSERT INTO "user" (user_id, username) VALUES ({_params(style, 2)})')
        .bind(user_id)
        .bind(f"user {user_id}"),
        backend.query(f"INSERT INTO post (post_id, user_id, content) VALUES ({_params(style, 3)})")
        .bind(post_id)
        .bind(user_id)
        .bind("test post"),
        backend.query(
            "INSERT INTO comment (comment_id, post_id, user_id, content)"
            f" VALUES ({_params(style, 4)})"
        )
        .bind(comment_id)
        .bind(post_id)
        .bind(user_id)
        .bind("test comment"),
    ]


async def run_pipeline(conn: Connection, sync: SyncMode) -> None:
    """Insert through one pipeline; raise the first statement failure."""
    first, *rest = blog_queries(conn)
    pipeline = Pipeline(first, 3, sync=sync)
    for q in rest:
        pipeline.push(q)
    for outcome in await pipeline.execute(conn):
        outcome.unwrap()


async def run_transaction(conn: Connection) -> None:
    """Insert the same rows one statement at a time in a transaction."""
    async with conn.begin() as tx:
        for q in blog_queries(conn):
            await q.execute(tx)


async def main() -> int:
    """Run both strategies and print their timings."""
    parser = argparse.ArgumentParser(description="Compare pipelined and transactional inserts")
    parser.add_argument(
        "url", nargs="?", default=None, help="Database URL (default: SQLWEAVE_DATABASE_URL)"
    )
    parser.add_argument("--rounds", type=int, default=100, help="Inserts per strategy")
    parser.add_argument(
        "--sync", choices=[m.value for m in SyncMode], default=SyncMode.EACH.value
    )
    args = parser.parse_args()

    logging.basicConfig(level=get_log_level(), stream=sys.stderr)
    url = args.url or get_database_url()

    logger.info("Running %d round(s) per strategy against %s", args.rounds, url)
    conn = await connect(url)
    try:
        for sql in SCHEMA[conn.backend.placeholder_style]:
            await conn.execute(sql, conn.backend.arguments())

        start = time.perf_counter()
        for _ in range(args.rounds):
            await run_pipeline(conn, SyncMode(args.sync))
        piped = time.perf_counter() - start

        start = time.perf_counter()
        for _ in range(args.rounds):
            await run_transaction(conn)
        transacted = time.perf_counter() - start
    finally:
        await conn.close()

    print(f"Database: {url}")
    print(f"  pipeline ({args.sync}): {piped * 1000 / args.rounds:.3f} ms/round")
    print(f"  transaction:     {transacted * 1000 / args.rounds:.3f} ms/round")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
