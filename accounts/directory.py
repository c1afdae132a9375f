"""User directory: durable mapping from Telegram identities to Emby accounts."""

import logging

import aiosqlite

from accounts.models import Registration
from core.exceptions import PersistenceError
from storage.db import Database

logger = logging.getLogger(__name__)


class UserDirectory:
    """Reads and writes the ``telegram_users`` table."""

    def __init__(self, db: Database, admin_ids: list[int] | None = None):
        self.db = db
        self.admin_ids = set(admin_ids or [])

    async def get(self, telegram_id: int) -> Registration | None:
        row = await self.db.fetchone(
            "SELECT id, telegram_id, username, admin, emby_user_id "
            "FROM telegram_users WHERE telegram_id = ? LIMIT 1",
            (telegram_id,),
        )
        if row is None:
            return None
        return Registration(**dict(row))

    async def is_registered(self, telegram_id: int) -> bool:
        return await self.get(telegram_id) is not None

    async def is_admin(self, telegram_id: int) -> bool:
        """Admin if on the configured allow-list or flagged in the directory."""
        if telegram_id in self.admin_ids:
            return True
        registration = await self.get(telegram_id)
        return bool(registration and registration.admin)

    async def register(self, telegram_id: int, username: str, emby_user_id: str) -> Registration:
        """Persist a registration after the Emby account was provisioned."""
        try:
            _, row_id = await self.db.execute(
                "INSERT INTO telegram_users (telegram_id, username, emby_user_id) VALUES (?, ?, ?)",
                (telegram_id, username, emby_user_id),
            )
        except aiosqlite.IntegrityError as e:
            raise PersistenceError(
                f"Telegram user {telegram_id} is already registered",
                details={"telegram_id": telegram_id},
            ) from e

        logger.info(f"Registered telegram user {telegram_id} as '{username}' (emby {emby_user_id})")
        return Registration(
            id=row_id, telegram_id=telegram_id, username=username, emby_user_id=emby_user_id
        )

    async def delete(self, telegram_id: int) -> bool:
        """Delete a registration. Returns False if there was nothing to delete."""
        deleted, _ = await self.db.execute(
            "DELETE FROM telegram_users WHERE telegram_id = ?", (telegram_id,)
        )
        if deleted:
            logger.info(f"Deleted registration for telegram user {telegram_id}")
        return deleted > 0

    async def set_admin(self, telegram_id: int, admin: bool) -> bool:
        updated, _ = await self.db.execute(
            "UPDATE telegram_users SET admin = ? WHERE telegram_id = ?",
            (1 if admin else 0, telegram_id),
        )
        return updated > 0
