"""
CRUD模块
按功能模块组织的数据库操作
"""

# Config模块
from .config import (
    get_config_value,
    update_config_value,
    initialize_configs,
)

# Task模块
from .task import (
    get_scheduled_tasks,
    get_scheduled_task,
    check_scheduled_task_exists_by_type,
    create_scheduled_task,
    update_scheduled_task,
    delete_scheduled_task,
    update_scheduled_task_run_times,
    get_last_run_result_for_scheduled_task,
    create_task_in_history,
    update_task_progress_in_history,
    finalize_task_in_history,
    update_task_status,
    get_tasks_from_history,
    get_task_details_from_history,
    delete_task_from_history,
    mark_interrupted_tasks_as_failed,
)

__all__ = [
    'get_config_value',
    'update_config_value',
    'initialize_configs',
    'get_scheduled_tasks',
    'get_scheduled_task',
    'check_scheduled_task_exists_by_type',
    'create_scheduled_task',
    'update_scheduled_task',
    'delete_scheduled_task',
    'update_scheduled_task_run_times',
    'get_last_run_result_for_scheduled_task',
    'create_task_in_history',
    'update_task_progress_in_history',
    'finalize_task_in_history',
    'update_task_status',
    'get_tasks_from_history',
    'get_task_details_from_history',
    'delete_task_from_history',
    'mark_interrupted_tasks_as_failed',
]
