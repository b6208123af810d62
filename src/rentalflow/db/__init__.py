"""Database layer for RentalFlow."""

from rentalflow.db.database import Database, get_db, lock_assets

__all__ = ["Database", "get_db", "lock_assets"]
