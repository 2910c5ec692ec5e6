"""
日志配置
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from ..config.config import MonitorConfig


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(config: MonitorConfig, level: Optional[str] = None) -> None:
    """
    配置日志

    Args:
        config: 监控配置
        level: 覆盖配置中的日志级别（命令行 --log-level）
    """
    level = (level or config.log_level).upper()

    # 移除默认的日志处理器
    logger.remove()

    logger.add(sys.stdout, level=level, format=CONSOLE_FORMAT, colorize=True)

    if not config.log_file:
        logger.info(f"Logger initialized with level: {level} (console only)")
        return

    Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        config.log_file,
        level=level,
        format=FILE_FORMAT,
        rotation=config.log_max_size,
        retention=config.log_backup_count,
        compression="zip",
        encoding="utf-8"
    )

    # 错误日志单独保存，保留时间加倍
    error_log_file = Path(config.log_file).with_suffix('.error.log')
    logger.add(
        str(error_log_file),
        level="ERROR",
        format=FILE_FORMAT,
        rotation=config.log_max_size,
        retention=config.log_backup_count * 2,
        compression="zip",
        encoding="utf-8"
    )

    logger.info(f"Logger initialized with level: {level}, file: {config.log_file}")
