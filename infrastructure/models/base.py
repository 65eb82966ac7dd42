"""
数据库模型基类（SQLAlchemy 2.0 风格）
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, MetaData
from sqlalchemy.orm import DeclarativeBase


# 约束命名规则，与 alembic 迁移中的索引名保持一致
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class TimestampMixin:
    """创建/更新时间戳，统一使用带时区的 UTC 时间"""

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False, comment="更新时间"
    )


# 元数据对象用于数据库迁移
metadata = Base.metadata
