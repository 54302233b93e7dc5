"""
结果验证器 - 致命 / 可容忍失败判断

子操作失败总是记录在 Executor 上；由调用方决定是否抛出。
"""
from loguru import logger

from .errors import TaskExecutionError
from .executor import Executor


def verify(executor: Executor, prompt: str, tolerate_failure: bool = False) -> None:
    """
    检查执行器状态

    Args:
        executor: 已 flush 的执行器
        prompt: 指令文本，用于错误信息
        tolerate_failure: 断言 / 条件等待等调用自行处理失败

    Raises:
        TaskExecutionError: 执行器处于错误状态且不容忍失败
    """
    if not executor.is_in_error_state():
        return

    error_task = executor.latest_error_task()
    reason = error_task.error if error_task else None

    if tolerate_failure:
        logger.debug(f"⚠️ [Verifier] {executor.name}: 失败已容忍: {reason}")
        return

    logger.warning(f"❌ [Verifier] {executor.name}: {reason}")
    raise TaskExecutionError(prompt, reason)
