#!/usr/bin/env python3
"""Create a user, or replace an existing user's password, in the reader sync database.
Run from repo root: python scripts/add_user.py <username> <password>
Uses the same READERSYNC_* environment as the server (READERSYNC_DB_PATH)."""

import argparse
import asyncio
import os
import sys

# Run from repo root so readersync can be found
repo_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(repo_root, "backend"))

from readersync.config import get_settings
from readersync.db.session import create_engine, create_session_factory, init_db, session_scope
from readersync.users.service import set_user


async def _add_user(username: str, password: str) -> None:
    settings = get_settings()
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(settings.db_path)
    try:
        await init_db(engine)
        async with session_scope(create_session_factory(engine)) as session:
            await set_user(session, username, password)
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or replace a reader sync user.")
    parser.add_argument("username")
    parser.add_argument("password")
    args = parser.parse_args()
    try:
        asyncio.run(_add_user(args.username, args.password))
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"User {args.username.strip()} saved to {get_settings().db_path}")


if __name__ == "__main__":
    main()
