import asyncio
import importlib
import pkgutil
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from . import crud, jobs
from .jobs.base import BaseJob
from .timezone import get_app_timezone
from .task_manager import TaskManager

logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        task_manager: TaskManager,
        library_manager=None,
        subtitle_encoder=None,
        localization_manager=None,
        config_manager=None,
    ):
        self._session_factory = session_factory
        self.task_manager = task_manager
        self._dependencies: Dict[str, Any] = {
            "session_factory": session_factory,
            "task_manager": task_manager,
            "library_manager": library_manager,
            "subtitle_encoder": subtitle_encoder,
            "localization_manager": localization_manager,
            "config_manager": config_manager,
        }
        self.scheduler = AsyncIOScheduler(timezone=str(get_app_timezone()))
        self._jobs: Dict[str, BaseJob] = {}

    def _load_jobs(self):
        """
        动态发现并加载 'jobs' 包下的所有任务类。
        依赖项按构造函数的参数名注入。
        """
        for finder, name, ispkg in pkgutil.iter_modules(jobs.__path__):
            if name.startswith("_") or name == "base":
                continue

            try:
                module = importlib.import_module(f"{jobs.__name__}.{name}")
                for class_name, obj in inspect.getmembers(module, inspect.isclass):
                    if issubclass(obj, BaseJob) and obj is not BaseJob and not inspect.isabstract(obj):
                        if obj.job_type in self._jobs:
                            logger.warning(f"发现重复的定时任务类型 '{obj.job_type}'。将被覆盖。")
                        init_params = inspect.signature(obj.__init__).parameters
                        args_to_pass = {n: dep for n, dep in self._dependencies.items() if n in init_params}
                        job = obj(**args_to_pass)
                        self._jobs[obj.job_type] = job
                        logger.info(f"定时任务 '{job.job_name}' (类型: {obj.job_type}, 来自模块 {name}) 已加载。")
            except Exception as e:
                logger.error(f"从模块 {name} 加载定时任务失败: {e}")

    def get_job(self, job_type: str) -> Optional[BaseJob]:
        return self._jobs.get(job_type)

    def get_available_jobs(self) -> List[Dict[str, Any]]:
        """获取所有已加载的可用任务及其元数据。"""
        return [
            {
                "jobType": job.job_type,
                "name": job.job_name,
                "description": job.description,
                "category": job.category,
                "isSystemTask": job.is_system_task,
                "defaultTriggers": [t.model_dump() for t in job.get_default_triggers()],
            }
            for job in self._jobs.values()
        ]

    def _coro_factory(self, job: BaseJob) -> Callable:
        return lambda callback, cancel_event: job.run(callback, cancel_event)

    def _create_job_runner(self, job_type: str, scheduled_task_id: str) -> Callable:
        """创建一个包装器，用于在 TaskManager 中运行任务，并等待其完成。"""
        job = self._jobs[job_type]

        async def runner():
            try:
                task_id, done_event = await self.task_manager.submit_task(
                    self._coro_factory(job),
                    job.job_name,
                    scheduled_task_id=scheduled_task_id
                )
            except HTTPException as e:
                if e.status_code == status.HTTP_409_CONFLICT:
                    logger.info(f"跳过定时任务 '{job.job_name}'，因为它已在队列中或正在运行。")
                    return
                raise
            # apscheduler 的作业会等待实际任务执行完毕
            await done_event.wait()
            logger.info(f"定时任务的运行器已确认任务 '{job.job_name}' (ID: {task_id}) 执行完毕。")

        return runner

    async def run_job_now(self, job_type: str) -> str:
        """不经过任何定时计划，直接手动运行一个任务。返回任务ID。"""
        job = self._jobs.get(job_type)
        if not job:
            raise ValueError(f"未知的任务类型: {job_type}")
        task_id, _ = await self.task_manager.submit_task(self._coro_factory(job), job.job_name)
        return task_id

    def _event_handler_wrapper(self, event: JobExecutionEvent):
        """
        一个同步的包装器，用于调度异步的事件处理器，
        确保异步逻辑能被正确执行。
        """
        asyncio.create_task(self._handle_job_event(event))

    async def _handle_job_event(self, event: JobExecutionEvent):
        job = self.scheduler.get_job(event.job_id)
        if job:
            # 使用 event.scheduled_run_time 作为 last_run_at 时间，并转换为 naive datetime
            last_run_time = event.scheduled_run_time.replace(tzinfo=None) if event.scheduled_run_time else None
            next_run_time = job.next_run_time.replace(tzinfo=None) if job.next_run_time else None
            async with self._session_factory() as session:
                await crud.update_scheduled_task_run_times(session, job.id, last_run_time, next_run_time)
            logger.info(f"已更新定时任务 '{job.name}' (ID: {job.id}) 的运行时间。")

    async def start(self):
        self._load_jobs()
        self.scheduler.add_listener(self._event_handler_wrapper, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        self.scheduler.start()
        await self._seed_default_triggers()
        await self.load_jobs_from_db()
        logger.info("定时任务调度器已启动。")

    async def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()

    async def _seed_default_triggers(self):
        """为还没有任何定时计划的任务创建其默认触发器"""
        async with self._session_factory() as session:
            for job in self._jobs.values():
                triggers = job.get_default_triggers()
                if not triggers or await crud.check_scheduled_task_exists_by_type(session, job.job_type):
                    continue
                for trigger in triggers:
                    await crud.create_scheduled_task(
                        session, str(uuid4()), job.job_name, job.job_type, trigger.cronExpression, True
                    )
                logger.info(f"已为任务 '{job.job_name}' 创建 {len(triggers)} 个默认触发器。")

    async def load_jobs_from_db(self):
        async with self._session_factory() as session:
            tasks = await crud.get_scheduled_tasks(session)
            for task in tasks:
                if task['jobType'] not in self._jobs:
                    logger.warning(f"定时任务 '{task['name']}' 的类型 '{task['jobType']}' 未知，已忽略。")
                    continue
                try:
                    runner = self._create_job_runner(task['jobType'], task['taskId'])
                    job = self.scheduler.add_job(runner, CronTrigger.from_crontab(task['cronExpression']), id=task['taskId'], name=task['name'], replace_existing=True)
                    if not task['isEnabled']: self.scheduler.pause_job(task['taskId'])
                    next_run_time = job.next_run_time.replace(tzinfo=None) if job.next_run_time else None
                    await crud.update_scheduled_task_run_times(session, job.id, task['lastRunAt'], next_run_time)
                except Exception as e:
                    logger.error(f"加载定时任务 '{task['name']}' (ID: {task['taskId']}) 失败: {e}")

    async def get_all_tasks(self) -> List[Dict[str, Any]]:
        """从数据库获取所有定时任务的列表。"""
        async with self._session_factory() as session:
            return await crud.get_scheduled_tasks(session)

    async def add_task(self, name: str, job_type: str, cron: str, is_enabled: bool) -> Dict[str, Any]:
        if job_type not in self._jobs:
            raise ValueError(f"未知的任务类型: {job_type}")
        # 无效的表达式会在这里抛出 ValueError
        trigger = CronTrigger.from_crontab(cron)

        async with self._session_factory() as session:
            task_id = str(uuid4())
            await crud.create_scheduled_task(session, task_id, name, job_type, cron, is_enabled)
            runner = self._create_job_runner(job_type, task_id)
            job = self.scheduler.add_job(runner, trigger, id=task_id, name=name)
            if not is_enabled: job.pause()
            next_run_time = job.next_run_time.replace(tzinfo=None) if job.next_run_time else None
            await crud.update_scheduled_task_run_times(session, task_id, None, next_run_time)
            return await crud.get_scheduled_task(session, task_id)

    async def update_task(self, task_id: str, name: str, cron: str, is_enabled: bool) -> Optional[Dict[str, Any]]:
        trigger = CronTrigger.from_crontab(cron)
        async with self._session_factory() as session:
            job = self.scheduler.get_job(task_id)
            if not job: return None

            task_info = await crud.get_scheduled_task(session, task_id)
            if not task_info: return None

            await crud.update_scheduled_task(session, task_id, name, cron, is_enabled)
            job.modify(name=name)
            job.reschedule(trigger=trigger)
            if is_enabled: job.resume()
            else: job.pause()
            next_run_time = job.next_run_time.replace(tzinfo=None) if job.next_run_time else None
            await crud.update_scheduled_task_run_times(session, task_id, task_info['lastRunAt'], next_run_time)
            return await crud.get_scheduled_task(session, task_id)

    async def delete_task(self, task_id: str) -> bool:
        if self.scheduler.get_job(task_id): self.scheduler.remove_job(task_id)
        async with self._session_factory() as session:
            return await crud.delete_scheduled_task(session, task_id)

    async def run_task_now(self, task_id: str):
        if job := self.scheduler.get_job(task_id):
            job.modify(next_run_time=datetime.now(self.scheduler.timezone))
        else:
            raise ValueError("找不到指定的任务ID")
