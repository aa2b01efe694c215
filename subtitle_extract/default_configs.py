"""
默认配置定义
每个配置项格式: (默认值, 描述)

注意: API 密钥需要在首次启动时随机生成,这些配置在main.py中单独处理
"""

def get_default_configs():
    """
    获取默认配置字典

    Returns:
        dict: 默认配置字典
    """
    return {
        # 插件配置
        'extractionDuringLibraryScan': ('false', '媒体入库时(收到 ItemAdded 通知)立即提取该媒体的内嵌字幕。'),

        # API 和 Webhook
        'webhookEnabled': ('true', '是否全局启用 Webhook 功能。'),
        'webhookLogRawRequest': ('false', '是否记录 Webhook 的原始请求体。'),
    }
