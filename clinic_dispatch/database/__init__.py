from clinic_dispatch.database.async_db import (
    AsyncSessionLocal,
    async_engine,
    build_session_factory,
    create_async_database_engine,
)

__all__ = [
    "AsyncSessionLocal",
    "async_engine",
    "build_session_factory",
    "create_async_database_engine",
]
