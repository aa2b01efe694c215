import collections
import logging
import logging.handlers
from pathlib import Path
from typing import List

from .config import settings

# 这个双端队列将用于在内存中存储最新的日志，以供控制API展示
_logs_deque = collections.deque(maxlen=200)

# 自定义一个日志处理器，它会将日志记录发送到我们的双端队列中
class DequeHandler(logging.Handler):
    def __init__(self, deque):
        super().__init__()
        self.deque = deque

    def emit(self, record):
        # 我们只存储格式化后的消息字符串
        self.deque.appendleft(self.format(record))

# 一个过滤器，用于从API日志中排除 httpx 的日志
class NoHttpxLogFilter(logging.Filter):
    def filter(self, record):
        # 不记录来自 'httpx' 和 'httpcore' logger 的日志
        return not (record.name.startswith('httpx') or record.name.startswith('httpcore'))

# 一个过滤器，用于翻译 apscheduler 的日志
class ApschedulerLogTranslatorFilter(logging.Filter):
    """一个用于翻译 apscheduler 日志的过滤器。"""
    def filter(self, record):
        if record.name.startswith('apscheduler'):
            # 直接检查原始消息格式字符串，而不是格式化后的消息，这样更可靠
            if record.msg == 'Scheduler started':
                record.msg = '调度器已启动'
                record.args = () # 清空参数，因为新消息是完整的
                return True

            # 检查添加任务的日志
            if record.msg == 'Added job "%s" to job store "%s"' and len(record.args) == 2:
                job_id, store = record.args
                record.msg = f'已添加任务 "{job_id}" 到任务存储 "{store}"'
                record.args = () # 清空参数
                return True

        return True

def get_log_dir() -> Path:
    return Path(settings.config_dir) / "logs"

def setup_logging():
    """
    配置根日志记录器，使其能够将日志输出到控制台、一个可轮转的文件，
    以及一个用于API的内存双端队列。
    此函数应在应用启动时被调用一次。
    """
    log_dir = get_log_dir()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except (OSError, PermissionError) as e:
        # 如果无法创建日志目录，使用当前目录
        print(f"警告: 无法创建日志目录 {log_dir}: {e}，将使用当前目录")
        log_dir = Path(".")
    log_file = log_dir / "app.log"

    # 为控制台和文件日志定义详细的格式
    verbose_formatter = logging.Formatter(
        '[%(asctime)s] [%(name)s:%(lineno)d] [%(levelname)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    # 为API定义一个更简洁的格式
    ui_formatter = logging.Formatter('[%(asctime)s] %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

    # 从配置中获取日志级别，如果无效则默认为 INFO
    log_level = getattr(logging, settings.log.level.upper(), logging.INFO)
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # 清理已存在的处理器，以避免在热重载时重复添加
    if logger.hasHandlers():
        logger.handlers.clear()

    logger.addFilter(ApschedulerLogTranslatorFilter())

    logger.addHandler(logging.StreamHandler()) # 控制台处理器
    logger.addHandler(logging.handlers.RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')) # 文件处理器

    deque_handler = DequeHandler(_logs_deque)
    deque_handler.addFilter(NoHttpxLogFilter())
    logger.addHandler(deque_handler)

    # 为所有处理器设置格式
    for handler in logger.handlers:
        if isinstance(handler, DequeHandler):
            handler.setFormatter(ui_formatter)
        else:
            handler.setFormatter(verbose_formatter)

    logging.info("日志系统已初始化，日志将输出到控制台和 %s", log_file)

    _setup_dedicated_logger(
        "ffmpeg_output", log_dir / "ffmpeg_output.log", logging.DEBUG,
        max_bytes=10*1024*1024, formatter=logging.Formatter('[%(asctime)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
    )
    _setup_dedicated_logger(
        "webhook_raw", log_dir / "webhook_raw.log", logging.INFO,
        max_bytes=5*1024*1024, formatter=ui_formatter
    )

def _setup_dedicated_logger(name: str, log_file: Path, level: int, max_bytes: int, formatter: logging.Formatter):
    """
    为 ffmpeg 的 stderr 输出和 Webhook 原始请求体设置专用的日志记录器。
    它们只写入自己的文件，不会出现在控制台和API中。
    """
    # 在启动时清空此日志文件，以确保只包含当前会话的调试信息
    if log_file.exists():
        try:
            with open(log_file, 'w', encoding='utf-8') as f:
                f.truncate(0)
        except IOError as e:
            logging.error(f"清空日志文件 {log_file} 失败: {e}")

    dedicated_logger = logging.getLogger(name)
    dedicated_logger.setLevel(level)
    dedicated_logger.propagate = False
    for handler in list(dedicated_logger.handlers):
        dedicated_logger.removeHandler(handler)

    handler = logging.handlers.RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=3, encoding='utf-8')
    handler.setFormatter(formatter)
    dedicated_logger.addHandler(handler)
    logging.info("专用日志 '%s' 已初始化，将输出到 %s", name, log_file)

def get_logs() -> List[str]:
    """返回为API存储的所有日志条目列表。"""
    return list(_logs_deque)
