import logging
import secrets
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status
from fastapi.security import APIKeyQuery
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud, models
from ..config_manager import ConfigManager
from ..database import get_db_session
from ..log_manager import get_logs
from ..media_servers.base import BaseMediaServer
from ..scheduler import SchedulerManager
from ..task_manager import TaskManager, TaskStatus
from .dependencies import get_config_manager, get_library_manager, get_scheduler_manager, get_task_manager

logger = logging.getLogger(__name__)
router = APIRouter()

# --- 依赖项 ---

api_key_scheme = APIKeyQuery(name="api_key", auto_error=False, description="用于所有外部控制API的访问密钥。")

async def verify_api_key(
    request: Request,
    api_key: str = Depends(api_key_scheme),
    config_manager: ConfigManager = Depends(get_config_manager),
) -> str:
    """依赖项：验证API密钥。如果验证成功，返回 API Key。"""
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated: API Key is missing.",
        )

    stored_key = await config_manager.get("externalApiKey", "")
    if not stored_key or not secrets.compare_digest(api_key, stored_key):
        logger.warning(f"外部控制API收到无效的API密钥 (来源: {request.client.host if request.client else '-'}, 路径: {request.url.path})")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="无效的API密钥"
        )
    return api_key

# --- 任务 (Job) ---
jobs_router = APIRouter(prefix="/jobs", dependencies=[Depends(verify_api_key)])

@jobs_router.get("", response_model=List[models.AvailableJobInfo], summary="获取所有可用的任务")
async def list_available_jobs(scheduler_manager: SchedulerManager = Depends(get_scheduler_manager)):
    """返回所有已加载的任务及其名称、描述、分类和默认触发器。"""
    return scheduler_manager.get_available_jobs()

@jobs_router.post("/{jobType}/run", status_code=status.HTTP_202_ACCEPTED, response_model=models.ControlTaskResponse, summary="手动运行一个任务")
async def run_job(jobType: str, scheduler_manager: SchedulerManager = Depends(get_scheduler_manager)):
    """不经过任何定时计划，立即把任务提交到任务队列。"""
    try:
        task_id = await scheduler_manager.run_job_now(jobType)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"message": "任务已提交。", "taskId": task_id}

# --- 任务管理 ---
tasks_router = APIRouter(prefix="/tasks", dependencies=[Depends(verify_api_key)])

@tasks_router.get("", response_model=models.PaginatedTasksResponse, summary="获取后台任务列表")
async def get_tasks(
    search: Optional[str] = Query(None, description="按标题搜索"),
    status: str = Query("all", description="按状态过滤: all, in_progress, completed"),
    page: int = Query(1, ge=1),
    pageSize: int = Query(50, ge=1, le=200),
    session: AsyncSession = Depends(get_db_session),
):
    """获取后台任务的列表和状态，支持按标题搜索和按状态过滤。"""
    return await crud.get_tasks_from_history(session, search, status, page=page, page_size=pageSize)

@tasks_router.get("/{taskId}", response_model=models.TaskInfo, summary="获取单个任务状态")
async def get_task_status(
    taskId: str,
    session: AsyncSession = Depends(get_db_session),
):
    """获取单个后台任务的详细状态。"""
    task_details = await crud.get_task_details_from_history(session, taskId)
    if not task_details:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="任务未找到。")
    return models.TaskInfo.model_validate(task_details)

@tasks_router.delete("/{taskId}", response_model=models.ControlActionResponse, summary="删除一个历史任务")
async def delete_task(
    taskId: str,
    session: AsyncSession = Depends(get_db_session),
    task_manager: TaskManager = Depends(get_task_manager),
):
    """
    ### 功能
    删除一个后台任务。
    - **排队中**: 从队列中移除。
    - **运行中/已暂停**: 尝试中止任务，然后删除。
    - **其他**: 从历史记录中删除。
    """
    task = await crud.get_task_details_from_history(session, taskId)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="任务未找到。")

    task_status = task['status']
    if task_status == TaskStatus.PENDING:
        if await task_manager.cancel_pending_task(taskId):
            logger.info(f"已从队列中取消待处理任务 {taskId}。")
    elif task_status in [TaskStatus.RUNNING, TaskStatus.PAUSED]:
        if await task_manager.abort_current_task(taskId):
            logger.info(f"已发送中止信号到任务 {taskId}。")

    if await crud.delete_task_from_history(session, taskId):
        return {"message": f"删除任务 {taskId} 的请求已处理。"}
    return {"message": "任务可能已被处理或不存在于历史记录中。"}

@tasks_router.post("/{taskId}/abort", response_model=models.ControlActionResponse, summary="中止正在运行的任务")
async def abort_task(taskId: str, task_manager: TaskManager = Depends(get_task_manager)):
    """向任务发送取消信号，任务将在处理下一个媒体项之前退出，已提取的字幕会保留。"""
    if not await task_manager.abort_current_task(taskId):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="中止任务失败，可能任务已完成或不是当前正在执行的任务。")
    return {"message": "中止任务的请求已发送。"}

@tasks_router.post("/{taskId}/pause", response_model=models.ControlActionResponse, summary="暂停正在运行的任务")
async def pause_task(taskId: str, task_manager: TaskManager = Depends(get_task_manager)):
    """暂停一个当前正在运行的任务。任务将在下一次进度更新时暂停。"""
    if not await task_manager.pause_task(taskId):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="暂停任务失败，可能任务未在运行。")
    return {"message": "任务已暂停。"}

@tasks_router.post("/{taskId}/resume", response_model=models.ControlActionResponse, summary="恢复已暂停的任务")
async def resume_task(taskId: str, task_manager: TaskManager = Depends(get_task_manager)):
    if not await task_manager.resume_task(taskId):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="恢复任务失败，可能任务未被暂停。")
    return {"message": "任务已恢复。"}

# --- 定时任务管理 ---
scheduler_router = APIRouter(prefix="/scheduler", dependencies=[Depends(verify_api_key)])

@scheduler_router.get("/tasks", response_model=List[models.ScheduledTaskInfo], summary="获取所有定时任务")
async def list_scheduled_tasks(scheduler_manager: SchedulerManager = Depends(get_scheduler_manager)):
    """获取所有已配置的定时任务及其当前状态。"""
    return await scheduler_manager.get_all_tasks()

@scheduler_router.post("/tasks", status_code=status.HTTP_201_CREATED, response_model=models.ScheduledTaskInfo, summary="创建定时任务")
async def create_scheduled_task(
    task_data: models.ScheduledTaskCreate,
    scheduler_manager: SchedulerManager = Depends(get_scheduler_manager),
):
    try:
        return await scheduler_manager.add_task(task_data.name, task_data.jobType, task_data.cronExpression, task_data.isEnabled)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@scheduler_router.put("/tasks/{taskId}", response_model=models.ScheduledTaskInfo, summary="更新定时任务")
async def update_scheduled_task(
    taskId: str,
    task_data: models.ScheduledTaskUpdate,
    scheduler_manager: SchedulerManager = Depends(get_scheduler_manager),
):
    try:
        updated = await scheduler_manager.update_task(taskId, task_data.name, task_data.cronExpression, task_data.isEnabled)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="定时任务未找到。")
    return updated

@scheduler_router.delete("/tasks/{taskId}", response_model=models.ControlActionResponse, summary="删除定时任务")
async def delete_scheduled_task(taskId: str, scheduler_manager: SchedulerManager = Depends(get_scheduler_manager)):
    if not await scheduler_manager.delete_task(taskId):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="定时任务未找到。")
    return {"message": "定时任务已删除。"}

@scheduler_router.post("/tasks/{taskId}/run", status_code=status.HTTP_202_ACCEPTED, response_model=models.ControlActionResponse, summary="立即运行定时任务")
async def run_scheduled_task(taskId: str, scheduler_manager: SchedulerManager = Depends(get_scheduler_manager)):
    try:
        await scheduler_manager.run_task_now(taskId)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"message": "定时任务已触发。"}

@scheduler_router.get("/{taskId}/last_result", response_model=models.TaskInfo, summary="获取定时任务的最近一次运行结果")
async def get_scheduled_task_last_result(
    taskId: str = Path(..., description="定时任务的ID"),
    session: AsyncSession = Depends(get_db_session),
):
    """如果任务从未运行过，将返回 404 Not Found。"""
    result = await crud.get_last_run_result_for_scheduled_task(session, taskId)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="未找到该定时任务的运行记录。")
    return models.TaskInfo.model_validate(result)

# --- 日志、配置与媒体服务器 ---
system_router = APIRouter(dependencies=[Depends(verify_api_key)])

@system_router.get("/logs", response_model=List[str], summary="获取最近的日志")
async def get_recent_logs():
    """返回内存中最近的日志，最新的在前。"""
    return get_logs()

@system_router.get("/config/{key}", response_model=models.ConfigValueResponse, summary="获取配置项")
async def get_config_item(key: str, config_manager: ConfigManager = Depends(get_config_manager)):
    value = await config_manager.get(key)
    if value is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"配置项 '{key}' 不存在。")
    return {"key": key, "value": value}

@system_router.put("/config/{key}", response_model=models.ConfigValueResponse, summary="更新配置项")
async def update_config_item(
    key: str,
    payload: models.ConfigValueRequest,
    config_manager: ConfigManager = Depends(get_config_manager),
):
    await config_manager.setValue(key, payload.value)
    logger.info(f"配置项 '{key}' 已通过控制API更新。")
    return {"key": key, "value": payload.value}

@system_router.get("/media-server/test", response_model=Dict[str, Any], summary="测试媒体服务器连接")
async def test_media_server(library_manager: BaseMediaServer = Depends(get_library_manager)):
    try:
        return await library_manager.test_connection()
    except (httpx.HTTPError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"无法连接到媒体服务器: {e}")


router.include_router(jobs_router)
router.include_router(tasks_router)
router.include_router(scheduler_router)
router.include_router(system_router)
