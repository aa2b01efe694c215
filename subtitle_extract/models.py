from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# --- 任务模型 ---

class TaskInfo(BaseModel):
    taskId: str
    title: str
    status: str
    progress: int
    description: str
    createdAt: datetime
    finishedAt: Optional[datetime] = None
    scheduledTaskId: Optional[str] = None

class PaginatedTasksResponse(BaseModel):
    """用于任务列表分页的响应模型"""
    total: int
    list: List[TaskInfo]

class TaskTriggerInfo(BaseModel):
    """任务的默认触发器"""
    type: str = Field("cron", description="触发器类型，目前只支持 cron")
    cronExpression: str

# --- 定时任务模型 ---

class ScheduledTaskCreate(BaseModel):
    name: str
    jobType: str
    cronExpression: str
    isEnabled: bool = True

class ScheduledTaskUpdate(BaseModel):
    name: str
    cronExpression: str
    isEnabled: bool

class ScheduledTaskInfo(ScheduledTaskCreate):
    taskId: str
    lastRunAt: Optional[datetime] = None
    nextRunAt: Optional[datetime] = None

class AvailableJobInfo(BaseModel):
    jobType: str
    name: str
    description: str = ""
    category: str = ""
    isSystemTask: bool = False
    defaultTriggers: List[TaskTriggerInfo] = Field(default_factory=list)

# --- 控制API通用模型 ---

class ControlActionResponse(BaseModel):
    """通用操作成功响应模型"""
    message: str

class ControlTaskResponse(BaseModel):
    """任务提交成功响应模型"""
    message: str
    taskId: str

class ConfigValueRequest(BaseModel):
    value: str

class ConfigValueResponse(BaseModel):
    key: str
    value: str
