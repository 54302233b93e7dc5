"""
动作记录适配层

把 "执行某个命名动作" 的调用转换为 ContextEngine 的步骤记录，
调用方只拿到步骤 id，不接触引擎内部结构。
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from loguru import logger

from .engine import ContextEngine
from .models import StepMetadata, StepStatus

T = TypeVar("T")

Metadata = Optional[Union[StepMetadata, Dict[str, Any]]]


class ActionContextIntegrator:
    """将动作调用与 ContextEngine 步骤记录对接"""

    def __init__(self, context_engine: ContextEngine):
        self.context_engine = context_engine

    async def record_action(self, action: str, description: str, metadata: Metadata = None) -> str:
        """
        记录一个 pending 动作

        Returns:
            str: 步骤 id，用于 complete_action
        """
        step = await self.context_engine.add_step(action, description, metadata)
        return step.id

    async def complete_action(
        self,
        step_id: str,
        success: bool,
        error: Optional[str] = None,
        result: Any = None,
    ) -> None:
        await self.context_engine.complete_step(
            step_id,
            StepStatus.SUCCESS if success else StepStatus.FAILURE,
            error,
            result,
        )

    def get_action_summaries(self) -> str:
        return self.context_engine.get_action_summaries()

    async def wrap_with_action_recording(
        self,
        action: str,
        description: str,
        fn: Callable[[], Awaitable[T]],
        metadata: Metadata = None,
    ) -> T:
        """
        记录动作并执行 fn

        fn 正常返回时记录 success 并原样返回其结果；
        抛出异常时记录 failure（错误信息取自异常）并重新抛出原异常。
        """
        step_id = await self.record_action(action, description, metadata)

        try:
            result = await fn()
        except asyncio.CancelledError:
            logger.warning(f"⚠️ [ActionContext] 动作被取消: {action}: {description}")
            await self.complete_action(step_id, False, "cancelled")
            raise
        except Exception as e:
            await self.complete_action(step_id, False, str(e) or type(e).__name__)
            raise

        await self.complete_action(step_id, True, result=result)
        return result
