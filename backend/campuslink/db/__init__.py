"""Database module for CampusLink."""

from .connection import PERSISTENCE_ERRORS, get_db_pool, init_db, close_db
from .credentials import CredentialRepository
from .users import UserRepository
from .models import (
    CredentialRecord,
    LinkedAccountStatus,
    LinkedUser,
)

__all__ = [
    "PERSISTENCE_ERRORS",
    "get_db_pool",
    "init_db",
    "close_db",
    "CredentialRepository",
    "UserRepository",
    "CredentialRecord",
    "LinkedAccountStatus",
    "LinkedUser",
]
