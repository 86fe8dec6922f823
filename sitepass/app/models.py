"""数据库模型与引擎配置。"""
from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, create_engine, func
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .generator import DEFAULT_ALPHABET

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./sitepass.db")


def _ensure_sqlite_directory(database_url: str) -> None:
    """Ensure the parent directory for a SQLite database exists."""

    url = make_url(database_url)
    if url.drivername != "sqlite":
        return

    database = url.database or ""
    if not database or database == ":memory:":
        return

    parent = Path(database).parent
    if parent.exists():
        return

    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:  # pragma: no cover - depends on environment permissions
        raise RuntimeError(f"无法创建 SQLite 数据目录: {parent!s}") from exc


_ensure_sqlite_directory(DATABASE_URL)


class Base(DeclarativeBase):
    """SQLAlchemy Declarative 基类。"""


engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


class ProfileRecord(Base):
    """密码生成配置。"""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    hash_algorithm: Mapped[str] = mapped_column(String(16), default="sha256", nullable=False)
    length: Mapped[int] = mapped_column(Integer, default=8, nullable=False)
    custom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    alphabet: Mapped[str] = mapped_column(Text, default=DEFAULT_ALPHABET, nullable=False)
    char_upper: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    char_lower: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    char_digits: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    char_symbols: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    mix_classes: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class SettingRecord(Base):
    """键值形式的同步设置，例如最近使用的配置与域名绑定。"""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
