"""
对调用方可见的异常

异常信息始终包含失败的指令 / 断言文本和一条诊断原因。
"""
from typing import Optional


class TaskExecutionError(RuntimeError):
    """指令执行失败"""

    def __init__(self, prompt: str, reason: Optional[str] = None):
        self.prompt = prompt
        self.reason = reason or "(no_reason)"
        super().__init__(f"{prompt}\nReason: {self.reason}")


class AssertionFailedError(TaskExecutionError):
    """断言未通过"""

    def __init__(self, assertion: str, reason: Optional[str] = None, msg: Optional[str] = None):
        self.assertion = assertion
        super().__init__(msg or f"Assertion failed: {assertion}", reason)


class TaskTimeoutError(TimeoutError):
    """等待超时（底层调用可能仍在运行）"""
