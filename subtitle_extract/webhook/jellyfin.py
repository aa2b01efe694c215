import logging
import json
from urllib.parse import parse_qs

from fastapi import Request, HTTPException, status

from .base import BaseWebhook

logger = logging.getLogger(__name__)


def _to_int(value):
    """季号/集号可能是字符串或非数字，无法解析时返回 None"""
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class JellyfinWebhook(BaseWebhook):
    async def handle(self, request: Request, webhook_source: str):
        # Jellyfin Webhook 插件既可以发送 JSON，也可以发送带 'payload' 字段的表单
        content_type = request.headers.get("content-type", "").lower()
        raw_body = await request.body()
        payload = None

        if not raw_body:
            self.logger.warning("Jellyfin Webhook: 收到了一个空的请求体。")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="请求体为空。")

        try:
            if "application/x-www-form-urlencoded" in content_type:
                form_data = parse_qs(raw_body.decode())
                if 'payload' not in form_data:
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail="表单数据中不包含 'payload' 字段。"
                    )
                self.logger.info("Jellyfin Webhook: 检测到表单数据，正在解析 'payload' 字段...")
                payload = json.loads(form_data['payload'][0])
            else: # 默认为 JSON
                if "application/json" not in content_type:
                    self.logger.warning(f"Jellyfin Webhook: 未知的 Content-Type: '{content_type}'，将尝试直接解析为 JSON。")
                payload = json.loads(raw_body)
        except HTTPException:
            raise
        except (json.JSONDecodeError, UnicodeDecodeError):
            self.logger.error(f"Jellyfin Webhook: 无法将请求体解析为 JSON。Content-Type: '{content_type}'")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="请求体不是有效的JSON格式。")

        if not payload or not isinstance(payload, dict):
            self.logger.error("Jellyfin Webhook: 解析后负载为空。")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="解析后负载为空。")

        event_type = payload.get("NotificationType")
        if event_type != "ItemAdded":
            logger.info(f"Webhook: 忽略非 'ItemAdded' 的事件 (类型: {event_type})")
            return None

        item_type = payload.get("ItemType")
        if item_type not in ["Episode", "Movie"]:
            logger.info(f"Webhook: 忽略非 'Episode' 或 'Movie' 的媒体项 (类型: {item_type})")
            return None

        item_id = payload.get("ItemId")
        if not item_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="负载中缺少 'ItemId'。")

        if item_type == "Episode" and payload.get("SeriesName"):
            season_number = _to_int(payload.get("SeasonNumber"))
            episode_number = _to_int(payload.get("EpisodeNumber"))
            if season_number is not None and episode_number is not None:
                item_name = f"{payload['SeriesName']} - S{season_number:02d}E{episode_number:02d}"
            else:
                item_name = f"{payload['SeriesName']} - {payload.get('Name') or item_id}"
        else:
            item_name = payload.get("Name") or item_id

        logger.info(f"Webhook: 收到 {item_type} '{item_name}' (ID: {item_id}) 的入库通知。")
        return await self.dispatch_task(item_id=item_id, item_name=item_name, webhook_source=webhook_source)
