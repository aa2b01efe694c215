import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..config_manager import ConfigManager
from ..webhook_manager import WebhookManager
from .dependencies import get_config_manager, get_webhook_manager

# 专用的 webhook_raw 日志记录器
webhook_raw_logger = logging.getLogger("webhook_raw")

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{webhook_type}", status_code=status.HTTP_202_ACCEPTED, summary="接收媒体服务器的Webhook通知")
async def handle_webhook(
    webhook_type: str,
    request: Request,
    api_key: str = Query(..., description="Webhook安全密钥"),
    config_manager: ConfigManager = Depends(get_config_manager),
    webhook_manager: WebhookManager = Depends(get_webhook_manager),
):
    """统一的Webhook入口，用于接收 Jellyfin Webhook 插件的入库通知。"""
    stored_key = await config_manager.get("webhookApiKey", "")
    # 使用 secrets.compare_digest 防止时序攻击，并处理 stored_key 为空的情况
    if not stored_key or not secrets.compare_digest(api_key, stored_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="无效的Webhook API Key")

    if await config_manager.get_bool("webhookLogRawRequest", False):
        # request.body() 会缓存请求体，处理器稍后还能再次读取
        raw_body = await request.body()
        webhook_raw_logger.info(f"Webhook 原始请求体 ({webhook_type}):\n{raw_body.decode(errors='ignore')}")

    try:
        handler = webhook_manager.get_handler(webhook_type)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    try:
        task_id = await handler.handle(request, webhook_source=webhook_type)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"处理 Webhook '{webhook_type}' 时发生未知错误: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="处理 Webhook 时发生内部错误。")

    return {"message": "Webhook received and is being processed.", "taskId": task_id}
