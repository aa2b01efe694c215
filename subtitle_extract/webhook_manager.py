import importlib
import inspect
import pkgutil
import logging
from typing import Any, Dict, Type, List

from . import webhook
from .webhook.base import BaseWebhook

logger = logging.getLogger(__name__)


class WebhookManager:
    def __init__(self, **dependencies: Any):
        # session_factory, task_manager, config_manager, library_manager, subtitle_encoder, localization_manager
        self._dependencies = dependencies
        self._handlers: Dict[str, Type[BaseWebhook]] = {}
        self._load_handlers()

    def _load_handlers(self):
        """动态发现并加载 'webhook' 包下的所有处理器，使用模块名作为类型。"""
        for finder, name, ispkg in pkgutil.iter_modules(webhook.__path__):
            if name.startswith("_") or name == "base":
                continue

            handler_key = name  # e.g., 'jellyfin'
            try:
                module = importlib.import_module(f"{webhook.__name__}.{name}")
                for class_name, obj in inspect.getmembers(module, inspect.isclass):
                    if issubclass(obj, BaseWebhook) and obj is not BaseWebhook:
                        if handler_key in self._handlers:
                            logger.warning(f"发现重复的 Webhook 处理器键 '{handler_key}'。将被覆盖。")
                        self._handlers[handler_key] = obj
                        logger.info(f"Webhook 处理器 '{handler_key}' (来自模块 {name}) 已加载。")
            except Exception as e:
                logger.error(f"从模块 {name} 加载 Webhook 处理器失败: {e}")

    def get_handler(self, webhook_type: str) -> BaseWebhook:
        handler_class = self._handlers.get(webhook_type)
        if not handler_class:
            raise ValueError(f"未找到类型为 '{webhook_type}' 的 Webhook 处理器")
        init_params = inspect.signature(handler_class.__init__).parameters
        return handler_class(**{n: dep for n, dep in self._dependencies.items() if n in init_params})

    def get_available_handlers(self) -> List[str]:
        """返回所有成功加载的 webhook 处理器类型（即模块名）的列表。"""
        return list(self._handlers.keys())
