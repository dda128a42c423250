"""
日志配置模块

提供统一的日志配置和管理功能
"""
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger


def setup_logger(log_config: Optional[Dict[str, Any]] = None, console: bool = True):
    """
    配置日志系统

    Args:
        log_config: 日志配置字典（或 LoggingConfig 模型），包含以下字段：
            - level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
            - file: 日志文件路径，为空时不写文件
            - rotation: 日志轮转周期
            - retention: 日志保留时间
            - compression: 压缩格式
            - debug: 是否启用调试模式
        console: 是否输出到控制台
    """
    if log_config is None:
        log_config = {}
    elif hasattr(log_config, "model_dump"):
        log_config = log_config.model_dump()

    logger.remove()

    log_level = "DEBUG" if log_config.get("debug", False) else log_config.get("level", "INFO")

    # execution_id / step 由遥测模块 bind，未绑定时为空
    logger.configure(extra={"execution_id": "-", "step": "-"})

    if console:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
                "<magenta>{extra[execution_id]}</magenta> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
            ),
            level=log_level,
            colorize=True,
        )

    log_file = log_config.get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[execution_id]} | {name}:{function} - {message}",
            level="DEBUG",  # 文件始终记录 DEBUG 级别
            rotation=log_config.get("rotation", "1 day"),
            retention=log_config.get("retention", "30 days"),
            compression=log_config.get("compression", "zip"),
        )

    return logger
