"""
上下文引擎 - 有界的执行历史 + 摘要

ContextEngine 持有一个活动中的 Run（容量受 max_steps 限制的步骤列表）
以及已归档的 Run 历史，并把已完成步骤压缩成可注入 prompt 的编号摘要。

同一实例不做内部加锁，调用方需保证串行调用。
"""
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from .models import (
    ContextSnapshot,
    RunContext,
    StepContext,
    StepMetadata,
    StepStatus,
    now_ms,
)
from .summarizer import AISummarizer


class NoActiveRunError(RuntimeError):
    """在没有活动 Run 时记录步骤"""


class ContextEngine:
    """
    上下文引擎

    使用方式：
        engine = ContextEngine(max_steps=10)
        await engine.start_run("checkout flow")
        step = await engine.add_step("aiAction", "click the buy button")
        await engine.complete_step(step.id, StepStatus.SUCCESS)
        prompt_block = engine.get_action_summaries()
    """

    def __init__(
        self,
        max_steps: int = 10,
        use_ai_summaries: bool = True,
        summarizer: Optional[AISummarizer] = None,
    ):
        if max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {max_steps}")
        self.max_steps = max_steps
        self.use_ai_summaries = use_ai_summaries
        self.summarizer = summarizer
        self._current_run: Optional[RunContext] = None
        self._history: List[RunContext] = []

    @property
    def _summaries_enabled(self) -> bool:
        return self.use_ai_summaries and self.summarizer is not None

    # ==================== Run ====================

    async def start_run(self, name: str, description: Optional[str] = None) -> RunContext:
        """开启新的 Run；已有活动 Run 时先完成并归档"""
        if self._current_run is not None:
            logger.debug(
                f"📋 [ContextEngine] 开启新 Run 前归档当前 Run: {self._current_run.name}"
            )
            await self.complete_run()

        self._current_run = RunContext(name=name, description=description)
        logger.info(f"🚀 [ContextEngine] Run 开始: name='{name}', id={self._current_run.id}")
        return self._current_run

    async def complete_run(self) -> Optional[RunContext]:
        """
        完成当前 Run

        结果由步骤结果推导（任一 failure 即 failure），只计算一次。

        Returns:
            RunContext: 归档的 Run；没有活动 Run 时返回 None
        """
        run = self._current_run
        if run is None:
            return None

        run.result = StepStatus.FAILURE if run.has_failures else StepStatus.SUCCESS
        run.completed_timestamp = now_ms()

        if self._summaries_enabled:
            run.summary = await self.summarizer.summarize_run(run)

        self._history.append(run)
        self._current_run = None

        logger.info(
            f"🏁 [ContextEngine] Run 完成: name='{run.name}', result={run.result.value}, "
            f"steps={len(run.steps)}"
        )
        return run

    # ==================== Step ====================

    async def add_step(
        self,
        action: str,
        description: str,
        metadata: Optional[Union[StepMetadata, Dict[str, Any]]] = None,
    ) -> StepContext:
        """
        向当前 Run 追加一个 pending 步骤

        超过 max_steps 时移除最早的步骤（FIFO）。

        Raises:
            NoActiveRunError: 没有活动 Run
        """
        run = self._current_run
        if run is None:
            raise NoActiveRunError("No active run. Call start_run first.")

        if isinstance(metadata, dict):
            metadata = StepMetadata.from_dict(metadata)

        step = StepContext(action=action, description=description, metadata=metadata)
        run.steps.append(step)

        if len(run.steps) > self.max_steps:
            evicted = run.steps.pop(0)
            logger.debug(
                f"🗑️ [ContextEngine] 超出容量 {self.max_steps}，移除最早步骤: "
                f"{evicted.action}: {evicted.description}"
            )

        logger.debug(f"📋 [ContextEngine] 添加步骤: {action}: {description} (id={step.id})")
        return step

    async def complete_step(
        self,
        step_id: str,
        result: Union[StepStatus, str],
        error: Optional[str] = None,
        action_result: Any = None,
    ) -> Optional[StepContext]:
        """
        将步骤标记为 success / failure

        Returns:
            StepContext: 更新后的步骤；没有活动 Run、id 未知或步骤已完成时返回 None
        """
        result = StepStatus(result)
        if result == StepStatus.PENDING:
            raise ValueError("complete_step requires a terminal result (success or failure)")

        run = self._current_run
        if run is None:
            return None

        step = next((s for s in run.steps if s.id == step_id), None)
        if step is None:
            logger.debug(f"⚠️ [ContextEngine] 未找到步骤 id={step_id}，忽略")
            return None

        if step.is_completed:
            logger.warning(
                f"⚠️ [ContextEngine] 步骤已完成 ({step.result.value})，忽略重复完成: id={step_id}"
            )
            return None

        step.result = result
        if error:
            step.error = error
        if action_result is not None:
            step.action_result = action_result

        if self._summaries_enabled:
            step.summary = await self.summarizer.summarize_step(step)

        logger.debug(
            f"✅ [ContextEngine] 步骤完成: {step.action}: {step.description} -> {result.value}"
        )
        return step

    def get_completed_steps(self) -> List[StepContext]:
        """当前 Run 中已完成（success / failure）的步骤，保持顺序"""
        if self._current_run is None:
            return []
        return [step for step in self._current_run.steps if step.is_completed]

    def get_action_summaries(self) -> str:
        """
        已完成步骤的编号摘要，用于注入后续 prompt

        每行格式 "N. {summary}"，没有摘要时使用 "{action}: {description} ({result})"。
        """
        completed = self.get_completed_steps()
        if not completed:
            return ""

        return "\n".join(
            f"{index}. {step.summary or f'{step.action}: {step.description} ({step.result.value})'}"
            for index, step in enumerate(completed, 1)
        )

    # ==================== Read-only access ====================

    @property
    def has_active_run(self) -> bool:
        return self._current_run is not None

    def get_current_run(self) -> Optional[RunContext]:
        return self._current_run.copy() if self._current_run else None

    def get_run_history(self) -> List[RunContext]:
        return [run.copy() for run in self._history]

    def snapshot(self) -> ContextSnapshot:
        return ContextSnapshot(
            current_run=self.get_current_run(),
            history=self.get_run_history(),
        )

    def clear(self) -> None:
        """清空活动 Run 与历史"""
        self._current_run = None
        self._history = []
