"""
Инициализация базы данных и сессий SQLAlchemy.

Назначение:
- Создание engine
- Контекстный менеджер для сессий
- Единая точка доступа к БД для всех сервисов
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from live_transcription_agent.common.config import get_settings


def _build_engine(dsn: str) -> Engine:
    if dsn.startswith("sqlite"):
        # sqlite используется в dev/тестах; in-memory база должна быть одной на процесс
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if dsn in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(dsn, **kwargs)
    return create_engine(dsn, pool_pre_ping=True)


# =============================================================================
# ENGINE / SESSION FACTORY
# =============================================================================
_settings = get_settings()

engine = _build_engine(_settings.database_url)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def init_db() -> None:
    """
    Создаёт таблицы, если их нет (dev/тесты; в prod схема та же).
    """
    from .models import Base

    Base.metadata.create_all(bind=engine)


# =============================================================================
# CONTEXT MANAGER
# =============================================================================
@contextmanager
def db_session() -> Iterator[Session]:
    """
    Контекстный менеджер для работы с БД.

    Использование:
        with db_session() as session:
            session.add(...)
    """
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
