import asyncio
import logging
import traceback
from enum import Enum
import time
from typing import Callable, Coroutine, Optional, Tuple
from uuid import uuid4

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "排队中"
    RUNNING = "运行中"
    COMPLETED = "已完成"
    FAILED = "失败"
    PAUSED = "已暂停"
    CANCELLED = "已取消"


class TaskSuccess(Exception):
    """自定义异常，用于表示任务成功完成并附带一条最终消息。"""
    pass


def clamp_progress(progress) -> int:
    return max(0, min(100, int(progress)))


class Task:
    def __init__(self, task_id: str, title: str, coro_factory: Callable[[Callable, asyncio.Event], Coroutine], scheduled_task_id: Optional[str] = None, unique_key: Optional[str] = None):
        self.task_id = task_id
        self.title = title
        self.coro_factory = coro_factory
        self.done_event = asyncio.Event()
        self.pause_event = asyncio.Event()
        self.cancel_event = asyncio.Event()
        self.running_coro_task: Optional[asyncio.Task] = None
        self.scheduled_task_id = scheduled_task_id
        self.last_update_time: float = 0.0
        self.update_lock = asyncio.Lock()
        self.unique_key = unique_key
        self.pause_event.set() # 默认为运行状态 (事件被设置)


class TaskManager:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self._current_task: Optional[Task] = None
        # run_immediately 提交的任务不经过队列
        self._immediate_tasks: dict[str, Task] = {}
        self._pending_titles: set[str] = set()
        self._active_unique_keys: set[str] = set()
        self._lock = asyncio.Lock()
        self._stopping = False
        self.logger = logging.getLogger(self.__class__.__name__)

    async def start(self):
        """启动后台工作协程来处理任务队列。"""
        if self._worker_task is None:
            # 先处理上次运行中断的任务，避免把新提交的任务误标记为失败
            await self._handle_interrupted_tasks()
            self._worker_task = asyncio.create_task(self._worker())
            self.logger.info("任务管理器已启动。")

    async def stop(self):
        """停止任务管理器。"""
        if self._worker_task:
            self._stopping = True
            if self._current_task:
                self._current_task.cancel_event.set()
                self._current_task.pause_event.set()
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
            self._stopping = False
        self.logger.info("任务管理器已停止。")

    async def _worker(self):
        """从队列中获取并执行任务。"""
        while True:
            task: Task = await self._queue.get()
            try:
                self._current_task = task
                await self._run_task_wrapper(task)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # 防止 worker 崩溃 - 捕获所有未被 _run_task_wrapper 处理的异常
                self.logger.error(f"Worker 捕获到未处理的异常: {type(e).__name__}: {e}", exc_info=True)
            finally:
                self._current_task = None
                self._queue.task_done()
            # 任务吞掉了取消请求而正常返回时，worker 也必须退出
            if self._stopping:
                break

    async def _run_task_wrapper(self, task: Task):
        """
        一个独立的包装器，用于在后台安全地执行单个任务。
        这可以防止单个任务的失败或阻塞影响到整个任务管理器。
        """
        self.logger.info(f"开始执行任务 '{task.title}' (ID: {task.task_id})")
        try:
            async with self._lock:
                self._pending_titles.discard(task.title)

            async with self._session_factory() as session:
                await crud.update_task_progress_in_history(
                    session, task.task_id, TaskStatus.RUNNING, 0, "正在初始化..."
                )

            progress_callback = self._get_progress_callback(task)
            running_task = asyncio.create_task(task.coro_factory(progress_callback, task.cancel_event))
            task.running_coro_task = running_task
            await running_task

            async with self._session_factory() as session:
                await crud.finalize_task_in_history(
                    session, task.task_id, TaskStatus.COMPLETED, "任务成功完成"
                )
            self.logger.info(f"任务 '{task.title}' (ID: {task.task_id}) 已成功完成。")
        except TaskSuccess as e:
            final_message = str(e) if str(e) else "任务成功完成"
            async with self._session_factory() as final_session:
                await crud.finalize_task_in_history(
                    final_session, task.task_id, TaskStatus.COMPLETED, final_message
                )
            self.logger.info(f"任务 '{task.title}' (ID: {task.task_id}) 已成功完成，消息: {final_message}")
        except asyncio.CancelledError:
            self.logger.info(f"任务 '{task.title}' (ID: {task.task_id}) 已被取消。")
            async with self._session_factory() as final_session:
                await crud.finalize_task_in_history(
                    final_session, task.task_id, TaskStatus.CANCELLED,
                    "服务关闭，任务已取消" if self._stopping else "任务已被用户取消", progress=None
                )
            # 服务关闭或不是通过 cancel_event 发起的取消，继续向上传递以结束 worker
            if self._stopping or not task.cancel_event.is_set():
                raise
        except Exception:
            error_message = f"任务执行失败 - {traceback.format_exc()}"
            async with self._session_factory() as final_session:
                await crud.finalize_task_in_history(
                    final_session, task.task_id, TaskStatus.FAILED, error_message.splitlines()[-1], progress=None
                )
            self.logger.error(f"任务 '{task.title}' (ID: {task.task_id}) 执行失败: {traceback.format_exc()}")
        finally:
            async with self._lock:
                if task.unique_key:
                    self._active_unique_keys.discard(task.unique_key)
                self._pending_titles.discard(task.title)
            self._immediate_tasks.pop(task.task_id, None)
            task.done_event.set()

    async def submit_task(
        self,
        coro_factory: Callable[[Callable, asyncio.Event], Coroutine],
        title: str,
        scheduled_task_id: Optional[str] = None,
        unique_key: Optional[str] = None,
        run_immediately: bool = False
    ) -> Tuple[str, asyncio.Event]:
        """提交一个新任务到队列，并在数据库中创建记录。返回任务ID和完成事件。"""
        async with self._lock:
            # 检查是否有同名任务正在排队或运行
            if title in self._pending_titles:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"任务 '{title}' 已在队列中，请勿重复提交。"
                )
            running_titles = [t.title for t in self._immediate_tasks.values()]
            if self._current_task:
                running_titles.append(self._current_task.title)
            if title in running_titles:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"任务 '{title}' 已在运行中，请勿重复提交。"
                )

            # 检查唯一键，防止同一媒体项的多个任务同时进行
            if unique_key:
                if unique_key in self._active_unique_keys:
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail="一个针对此媒体的相似任务已在队列中或正在运行，请勿重复提交。"
                    )
                self._active_unique_keys.add(unique_key)
            self._pending_titles.add(title)

        task_id = str(uuid4())
        task = Task(task_id, title, coro_factory, scheduled_task_id=scheduled_task_id, unique_key=unique_key)

        async with self._session_factory() as session:
            await crud.create_task_in_history(
                session, task_id, title, TaskStatus.PENDING, "等待执行...",
                scheduled_task_id=scheduled_task_id, unique_key=unique_key
            )

        if run_immediately:
            self.logger.info(f"立即执行任务 '{title}' (ID: {task_id})，绕过队列。")
            self._immediate_tasks[task_id] = task
            asyncio.create_task(self._run_task_wrapper(task))
        else:
            await self._queue.put(task)
            self.logger.info(f"任务 '{title}' 已提交到队列，ID: {task_id}")
        return task_id, task.done_event

    def _get_progress_callback(self, task: Task) -> Callable:
        """为特定任务创建一个可暂停的回调闭包。"""
        async def pausable_callback(progress, description: str, status: Optional[TaskStatus] = None):
            # 如果任务被暂停，.wait() 将会阻塞，直到被恢复或中止
            await task.pause_event.wait()

            value = clamp_progress(progress)
            now = time.time()
            # 只在状态改变、首次、完成或距离上次更新超过0.5秒时才更新数据库
            force_update = value == 0 or value >= 100 or status is not None

            async with task.update_lock:
                if not force_update and (now - task.last_update_time < 0.5):
                    return
                task.last_update_time = now

            try:
                async with self._session_factory() as session:
                    await crud.update_task_progress_in_history(
                        session, task.task_id, status or TaskStatus.RUNNING, value, description
                    )
            except Exception as e:
                self.logger.error(f"任务进度更新失败 (ID: {task.task_id}): {e}", exc_info=False)

        return pausable_callback

    def _find_running_task(self, task_id: str) -> Optional[Task]:
        if self._current_task and self._current_task.task_id == task_id:
            return self._current_task
        return self._immediate_tasks.get(task_id)

    async def cancel_pending_task(self, task_id: str) -> bool:
        """从队列中移除一个待处理的任务。"""
        task_to_remove: Optional[Task] = None
        temp_list = []
        while not self._queue.empty():
            try:
                task = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            if task.task_id == task_id:
                task_to_remove = task
            else:
                temp_list.append(task)

        for task in temp_list:
            await self._queue.put(task)

        if task_to_remove is None:
            return False

        # 必须同时清理任务标题和唯一键，以允许用户重新提交该任务
        async with self._lock:
            self._pending_titles.discard(task_to_remove.title)
            if task_to_remove.unique_key:
                self._active_unique_keys.discard(task_to_remove.unique_key)
        async with self._session_factory() as session:
            await crud.finalize_task_in_history(
                session, task_id, TaskStatus.CANCELLED, "任务在排队时被取消", progress=None
            )
        task_to_remove.done_event.set()
        self.logger.info(f"已从队列中取消待处理任务 '{task_to_remove.title}' (ID: {task_id})。")
        return True

    async def abort_current_task(self, task_id: str) -> bool:
        """如果ID匹配，则中止当前正在运行或暂停的任务。"""
        task = self._find_running_task(task_id)
        if task and task.running_coro_task:
            self.logger.info(f"正在中止任务 '{task.title}' (ID: {task_id})")
            task.cancel_event.set()
            # 解除暂停，以便任务可以检查到取消请求
            task.pause_event.set()
            return True

        self.logger.warning(f"尝试中止任务 {task_id} 失败，因为它不是当前任务或未在运行。")
        return False

    async def pause_task(self, task_id: str) -> bool:
        """如果ID匹配，则暂停当前正在运行的任务。"""
        task = self._find_running_task(task_id)
        if task:
            task.pause_event.clear()
            async with self._session_factory() as session:
                await crud.update_task_status(session, task.task_id, TaskStatus.PAUSED)
            self.logger.info(f"已暂停任务 '{task.title}' (ID: {task_id})。")
            return True

        self.logger.warning(f"尝试暂停任务 {task_id} 失败，因为它不是当前正在运行的任务。")
        return False

    async def resume_task(self, task_id: str) -> bool:
        """如果ID匹配，则恢复当前已暂停的任务。"""
        task = self._find_running_task(task_id)
        if task:
            task.pause_event.set()
            async with self._session_factory() as session:
                await crud.update_task_status(session, task.task_id, TaskStatus.RUNNING)
            self.logger.info(f"已恢复任务 '{task.title}' (ID: {task_id})。")
            return True

        self.logger.warning(f"尝试恢复任务 {task_id} 失败，因为它不是当前已暂停的任务。")
        return False

    async def _handle_interrupted_tasks(self):
        """处理服务重启时中断的任务"""
        try:
            async with self._session_factory() as session:
                count = await crud.mark_interrupted_tasks_as_failed(session)
            if count:
                self.logger.info(f"已将 {count} 个因重启而中断的任务标记为失败。")
            else:
                self.logger.info("没有发现中断的任务")
        except Exception as e:
            self.logger.error(f"处理中断任务时发生错误: {e}", exc_info=True)
