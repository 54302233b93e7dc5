"""
上下文引擎模块 - 有界、可摘要的多步骤执行历史

每次指令执行前打开一个步骤，执行结束后关闭；
已完成步骤的编号摘要会注入后续指令的 prompt。
"""
from .engine import ContextEngine, NoActiveRunError
from .integration import ActionContextIntegrator
from .models import ContextSnapshot, RunContext, StepContext, StepMetadata, StepStatus
from .summarizer import AISummarizer

__all__ = [
    "ContextEngine",
    "NoActiveRunError",
    "ActionContextIntegrator",
    "AISummarizer",
    "ContextSnapshot",
    "RunContext",
    "StepContext",
    "StepMetadata",
    "StepStatus",
]
