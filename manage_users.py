#!/usr/bin/env python3
"""
User Management Utility

Administrative actions the HTTP API does not expose:
- Create an admin account
- List all users with their roles
"""

import asyncio
import sys

from api.config import config
from api.database import MongoDBManager
from api.errors import APIError
from api.security import TokenManager
from api.services import UserService
from utilities.logger import setup_logging


def _user_service(db_manager: MongoDBManager) -> UserService:
    tokens = TokenManager(config.secret_key, config.algorithm, config.access_token_expire_minutes)
    return UserService(db_manager.users, tokens, bcrypt_rounds=config.bcrypt_rounds)


async def create_admin(email: str, password: str) -> int:
    """Create an admin account."""
    db_manager = MongoDBManager(config.mongodb_url, config.mongodb_database)
    try:
        await db_manager.connect()
        user = await _user_service(db_manager).create_admin(email, password)
        print(f"✅ Admin created: {user.email} (id {user.id})")
        return 0
    except APIError as e:
        print(f"❌ Could not create admin: {e.message}")
        return 1
    finally:
        await db_manager.disconnect()


async def list_users() -> int:
    """List all users in the database."""
    db_manager = MongoDBManager(config.mongodb_url, config.mongodb_database)
    try:
        await db_manager.connect()
        users = await _user_service(db_manager).list_users()
        if not users:
            print("❌ No users found in database")
            return 0

        print(f"✅ Found {len(users)} users:")
        for i, user in enumerate(users, 1):
            print(f"{i:3d}. {user.email:<40} {user.role.value:<6} {user.id}")
        return 0
    except APIError as e:
        print(f"❌ Error listing users: {e.message}")
        return 1
    finally:
        await db_manager.disconnect()


def usage() -> None:
    print("Usage: python manage_users.py [create-admin|list] [email] [password]")
    print()
    print("Commands:")
    print("  create-admin  - Create an admin account")
    print("  list          - List all users")
    print()
    print("Examples:")
    print("  python manage_users.py create-admin admin@example.com 's3cret'")
    print("  python manage_users.py list")


async def main() -> int:
    """Main function."""
    if len(sys.argv) < 2:
        usage()
        return 1

    command = sys.argv[1].lower()

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )

    if command == "create-admin":
        if len(sys.argv) < 4:
            print("❌ Error: email and password required for create-admin")
            print("Usage: python manage_users.py create-admin <email> <password>")
            return 1
        return await create_admin(sys.argv[2], sys.argv[3])
    if command == "list":
        return await list_users()

    print(f"❌ Unknown command: {command}")
    print("Available commands: create-admin, list")
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
