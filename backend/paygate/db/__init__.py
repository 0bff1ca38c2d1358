"""
Database package for PayGate.

Exports database initialization, engine/session helpers and models.
"""
from .init_db import initialize_database, create_engine_for, create_session_factory
from .models import Base, PaymentModel

__all__ = [
    "initialize_database",
    "create_engine_for",
    "create_session_factory",
    "Base",
    "PaymentModel",
]
