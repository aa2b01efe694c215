from __future__ import annotations
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, TEXT, TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

class NaiveDateTime(TypeDecorator):
    """
    自定义数据库类型，确保无论数据库驱动返回何种datetime对象，
    在应用层面我们得到的都是不带时区信息的（naive）datetime。
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        """在写入数据库时，移除时区信息。"""
        if value is not None and value.tzinfo is not None:
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        """从数据库读取时，移除时区信息。"""
        if value is not None and value.tzinfo is not None:
            return value.replace(tzinfo=None)
        return value

class Base(DeclarativeBase):
    pass

class Config(Base):
    __tablename__ = "config"
    configKey: Mapped[str] = mapped_column("config_key", String(255), primary_key=True)
    configValue: Mapped[str] = mapped_column("config_value", TEXT)
    description: Mapped[Optional[str]] = mapped_column(TEXT)

class ScheduledTask(Base):
    __tablename__ = "scheduled_tasks"
    # Python属性名为 'taskId'，以匹配API响应模型，数据库列名保持为 'id'
    taskId: Mapped[str] = mapped_column("id", String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    jobType: Mapped[str] = mapped_column("job_type", String(255))
    cronExpression: Mapped[str] = mapped_column("cron_expression", String(255))
    isEnabled: Mapped[bool] = mapped_column("is_enabled", Boolean, default=True)
    lastRunAt: Mapped[Optional[datetime]] = mapped_column("last_run_at", NaiveDateTime)
    nextRunAt: Mapped[Optional[datetime]] = mapped_column("next_run_at", NaiveDateTime)

class TaskHistory(Base):
    __tablename__ = "task_history"
    taskId: Mapped[str] = mapped_column("id", String(255), primary_key=True)
    scheduledTaskId: Mapped[Optional[str]] = mapped_column("scheduled_task_id", ForeignKey("scheduled_tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(50))
    progress: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[Optional[str]] = mapped_column(TEXT)
    createdAt: Mapped[datetime] = mapped_column("created_at", NaiveDateTime)
    updatedAt: Mapped[Optional[datetime]] = mapped_column("updated_at", NaiveDateTime)
    finishedAt: Mapped[Optional[datetime]] = mapped_column("finished_at", NaiveDateTime)
    uniqueKey: Mapped[Optional[str]] = mapped_column("unique_key", String(255), index=True)

    __table_args__ = (Index('idx_created_at', 'created_at'),)
