"""
loguru 日志初始化
"""
import sys
from typing import Optional

from loguru import logger

from .settings import Settings, get_settings


def setup_logging(settings: Optional[Settings] = None) -> None:
    """配置控制台与（可选）文件日志输出，进程启动时调用一次"""
    settings = settings or get_settings()

    logger.remove()

    # 控制台
    logger.add(
        sys.stdout,
        level=settings.log_level.upper(),
        colorize=True
    )

    # 文件
    if settings.log_file:
        logger.add(
            settings.log_file,
            level=settings.log_level.upper(),
            rotation="1 day"
        )
