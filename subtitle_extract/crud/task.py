"""
任务相关的CRUD操作
包括定时任务和任务历史
"""

import logging
from datetime import datetime
from typing import List, Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func

from ..orm_models import ScheduledTask, TaskHistory
from ..timezone import get_now

logger = logging.getLogger(__name__)


# --- Scheduled Tasks ---

def _scheduled_task_columns():
    return (
        ScheduledTask.taskId.label("taskId"),
        ScheduledTask.name.label("name"),
        ScheduledTask.jobType.label("jobType"),
        ScheduledTask.cronExpression.label("cronExpression"),
        ScheduledTask.isEnabled.label("isEnabled"),
        ScheduledTask.lastRunAt.label("lastRunAt"),
        ScheduledTask.nextRunAt.label("nextRunAt")
    )


async def get_scheduled_tasks(session: AsyncSession) -> List[Dict[str, Any]]:
    """获取所有定时任务"""
    stmt = select(*_scheduled_task_columns()).order_by(ScheduledTask.name)
    result = await session.execute(stmt)
    return [dict(row) for row in result.mappings()]


async def get_scheduled_task(session: AsyncSession, task_id: str) -> Optional[Dict[str, Any]]:
    """获取单个定时任务"""
    stmt = select(*_scheduled_task_columns()).where(ScheduledTask.taskId == task_id)
    result = await session.execute(stmt)
    row = result.mappings().first()
    return dict(row) if row else None


async def check_scheduled_task_exists_by_type(session: AsyncSession, job_type: str) -> bool:
    """检查指定类型的定时任务是否存在"""
    stmt = select(ScheduledTask.taskId).where(ScheduledTask.jobType == job_type).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None


async def create_scheduled_task(
    session: AsyncSession,
    task_id: str,
    name: str,
    job_type: str,
    cron: str,
    is_enabled: bool
):
    """创建定时任务"""
    new_task = ScheduledTask(
        taskId=task_id,
        name=name,
        jobType=job_type,
        cronExpression=cron,
        isEnabled=is_enabled
    )
    session.add(new_task)
    await session.commit()


async def update_scheduled_task(
    session: AsyncSession,
    task_id: str,
    name: str,
    cron: str,
    is_enabled: bool
) -> bool:
    """更新定时任务"""
    task = await session.get(ScheduledTask, task_id)
    if not task:
        return False

    task.name = name
    task.cronExpression = cron
    task.isEnabled = is_enabled
    await session.commit()
    return True


async def delete_scheduled_task(session: AsyncSession, task_id: str) -> bool:
    """删除定时任务"""
    task = await session.get(ScheduledTask, task_id)
    if not task:
        return False

    await session.delete(task)
    await session.commit()
    return True


async def update_scheduled_task_run_times(
    session: AsyncSession,
    task_id: str,
    last_run: Optional[datetime],
    next_run: Optional[datetime]
):
    """更新定时任务的运行时间"""
    values_to_update = {
        "lastRunAt": last_run.replace(tzinfo=None) if last_run else None,
        "nextRunAt": next_run.replace(tzinfo=None) if next_run else None
    }
    await session.execute(
        update(ScheduledTask).where(ScheduledTask.taskId == task_id).values(**values_to_update)
    )
    await session.commit()


async def get_last_run_result_for_scheduled_task(
    session: AsyncSession,
    scheduled_task_id: str
) -> Optional[Dict[str, Any]]:
    """获取指定定时任务的最近一次运行结果"""
    stmt = (
        select(TaskHistory)
        .where(TaskHistory.scheduledTaskId == scheduled_task_id)
        .order_by(TaskHistory.createdAt.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    task_run = result.scalar_one_or_none()
    if not task_run:
        return None
    return _task_to_dict(task_run)


# --- Task History ---

def _task_to_dict(task: TaskHistory) -> Dict[str, Any]:
    return {
        "taskId": task.taskId,
        "title": task.title,
        "status": task.status,
        "progress": task.progress,
        "description": task.description or "",
        "createdAt": task.createdAt,
        "finishedAt": task.finishedAt,
        "scheduledTaskId": task.scheduledTaskId,
    }


async def create_task_in_history(
    session: AsyncSession,
    task_id: str,
    title: str,
    status: str,
    description: str,
    scheduled_task_id: Optional[str] = None,
    unique_key: Optional[str] = None,
):
    """在任务历史中创建新任务"""
    now = get_now()
    new_task = TaskHistory(
        taskId=task_id,
        title=title,
        status=status,
        description=description,
        scheduledTaskId=scheduled_task_id,
        createdAt=now,
        updatedAt=now,
        uniqueKey=unique_key,
    )
    session.add(new_task)
    await session.commit()


async def update_task_progress_in_history(
    session: AsyncSession,
    task_id: str,
    status: str,
    progress: int,
    description: str
):
    """更新任务进度"""
    await session.execute(
        update(TaskHistory)
        .where(TaskHistory.taskId == task_id)
        .values(status=status, progress=progress, description=description, updatedAt=get_now())
    )
    await session.commit()


async def finalize_task_in_history(session: AsyncSession, task_id: str, status: str, description: str, progress: Optional[int] = 100):
    """
    结束任务。
    progress 为 None 时保留最后一次上报的进度（用于取消和失败的任务）。
    """
    values = {
        "status": status,
        "description": description,
        "finishedAt": get_now(),
        "updatedAt": get_now(),
    }
    if progress is not None:
        values["progress"] = progress
    await session.execute(
        update(TaskHistory).where(TaskHistory.taskId == task_id).values(**values)
    )
    await session.commit()


async def update_task_status(session: AsyncSession, task_id: str, status: str):
    """仅更新任务状态"""
    await session.execute(
        update(TaskHistory)
        .where(TaskHistory.taskId == task_id)
        .values(status=status, updatedAt=get_now())
    )
    await session.commit()


async def get_tasks_from_history(
    session: AsyncSession,
    search_term: Optional[str],
    status_filter: str,
    page: int = 1,
    page_size: int = 50
) -> Dict[str, Any]:
    """分页获取任务历史"""
    base_stmt = select(TaskHistory)
    if search_term:
        base_stmt = base_stmt.where(TaskHistory.title.like(f"%{search_term}%"))
    if status_filter == 'in_progress':
        base_stmt = base_stmt.where(TaskHistory.status.in_(['排队中', '运行中', '已暂停']))
    elif status_filter == 'completed':
        base_stmt = base_stmt.where(TaskHistory.status == '已完成')

    count_stmt = select(func.count()).select_from(base_stmt.subquery())
    total_count = (await session.execute(count_stmt)).scalar_one()

    offset = (page - 1) * page_size
    data_stmt = base_stmt.order_by(TaskHistory.createdAt.desc()).offset(offset).limit(page_size)
    result = await session.execute(data_stmt)
    return {"total": total_count, "list": [_task_to_dict(t) for t in result.scalars().all()]}


async def get_task_details_from_history(session: AsyncSession, task_id: str) -> Optional[Dict[str, Any]]:
    """获取单个任务的详细信息"""
    task = await session.get(TaskHistory, task_id)
    return _task_to_dict(task) if task else None


async def delete_task_from_history(session: AsyncSession, task_id: str) -> bool:
    task = await session.get(TaskHistory, task_id)
    if not task:
        logger.warning(f"尝试删除不存在的任务: {task_id}")
        return False

    await session.delete(task)
    await session.commit()
    logger.info(f"成功删除任务: {task_id}")
    return True


async def mark_interrupted_tasks_as_failed(session: AsyncSession) -> int:
    """将因程序重启而中断的任务标记为失败。"""
    stmt = (
        update(TaskHistory)
        .where(TaskHistory.status.in_(['排队中', '运行中', '已暂停']))
        .values(status='失败', description='因程序重启而中断', finishedAt=get_now(), updatedAt=get_now())
    )
    result = await session.execute(stmt)
    await session.commit()
    return result.rowcount
