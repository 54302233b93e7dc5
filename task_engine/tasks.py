"""
页面任务执行器

把一条高层指令转换为子操作管线并交给 Executor 运行：
- run_plans：执行预先构建好的原子动作（Tap / Input / Locate ...）
- action：规划 → 执行 → 按需重新规划
- query / boolean / number / string：数据提取
- assert_ / wait_for：断言与条件等待

规划与元素定位在调用推理服务前先查询缓存。
"""
import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from loguru import logger

from config import Settings, get_settings
from .cache import TaskCache, fingerprint
from .executor import Executor, OnTaskStart
from .inference import InferenceService, LocateResult, PlanResult
from .models import (
    CacheInfo,
    ExecutionTask,
    PlanAction,
    TaskOutcome,
    TaskType,
)
from .page import AbstractPage, PageSnapshot
from .planner import LOCATE_ACTION
from .reporter import locate_param_str, task_title_str

R = TypeVar("R")

# 同一批子操作之间共享的状态（Locate 找到的元素、Planning 的结果）
PipelineState = Dict[str, Any]


@dataclass
class ExecutorResult:
    executor: Executor
    output: Any = None


class PageTaskExecutor:
    """
    页面任务执行器

    使用方式：
        task_executor = PageTaskExecutor(page, inference, cache)
        result = await task_executor.action("在搜索框输入 python 并搜索")
        if result.executor.is_in_error_state():
            ...
    """

    def __init__(
        self,
        page: AbstractPage,
        inference: InferenceService,
        cache: Optional[TaskCache] = None,
        settings: Optional[Settings] = None,
        on_task_start: Optional[OnTaskStart] = None,
    ):
        self.page = page
        self.inference = inference
        self.cache = cache
        self.settings = settings or get_settings()
        self.on_task_start = on_task_start

    def _new_executor(self, title: str) -> Executor:
        return Executor(title, on_task_start=self.on_task_start)

    # ==================== 缓存 ====================

    async def _cached_call(
        self,
        kind: str,
        prompt: str,
        snapshot: PageSnapshot,
        call: Callable[[], Awaitable[R]],
        decode: Callable[[Dict[str, Any]], R],
        cacheable: Callable[[R], bool],
        options: Optional[Dict[str, Any]] = None,
    ) -> Tuple[R, Optional[CacheInfo]]:
        """
        先查缓存再调用推理服务

        Returns:
            (结果, 缓存信息)；未配置缓存时缓存信息为 None
        """
        if self.cache is None:
            return await call(), None

        fp = fingerprint(kind, prompt, snapshot.signature(), options)
        cached = await self.cache.get(fp)
        if cached is not None:
            result = decode(cached)
            # 命中时没有发生推理调用
            result.usage = None
            return result, CacheInfo(hit=True)

        result = await call()
        if cacheable(result):
            await self.cache.put(fp, result.to_dict())
        return result, CacheInfo(hit=False)

    # ==================== 子操作构建 ====================

    def _locate_task(self, plan: PlanAction, state: PipelineState) -> ExecutionTask:
        prompt = locate_param_str(plan.locate)
        # prompt 以外的定位选项（deepThink 等）
        options = {k: v for k, v in (plan.locate or {}).items() if k != "prompt"} or None

        async def body(task: ExecutionTask) -> TaskOutcome:
            if not prompt:
                raise ValueError("missing locate prompt")
            snapshot = await self.page.snapshot()
            result, cache = await self._cached_call(
                "locate",
                prompt,
                snapshot,
                lambda: self.inference.locate(prompt, snapshot, options),
                LocateResult.from_dict,
                lambda r: r.element is not None,
                options,
            )
            if result.element is None:
                reason = f", {result.thought}" if result.thought else ""
                raise RuntimeError(f"Element not found: {prompt}{reason}")
            state["element"] = result.element
            return TaskOutcome(
                output={"element": result.element},
                thought=result.thought,
                usage=result.usage,
                cache=cache,
            )

        return ExecutionTask(
            type=TaskType.INSIGHT,
            sub_type=LOCATE_ACTION,
            param=dict(plan.locate or {}),
            locate=plan.locate,
            thought=plan.thought,
            executor=body,
        )

    def _action_task(self, plan: PlanAction, state: PipelineState) -> ExecutionTask:
        async def body(task: ExecutionTask) -> TaskOutcome:
            if plan.type == "Sleep":
                await asyncio.sleep(float(plan.param.get("timeMs", 0)) / 1000)
                return TaskOutcome()
            if plan.type == "Finished":
                return TaskOutcome()
            if plan.type == "Error":
                raise RuntimeError(plan.thought or plan.param.get("thought") or "unknown error")

            element = state.get("element") if plan.locate else None
            if plan.locate and element is None:
                raise RuntimeError(f"Element not found: {locate_param_str(plan.locate)}")
            output = await self.page.perform(plan, element)
            return TaskOutcome(output=output)

        return ExecutionTask(
            type=TaskType.ACTION,
            sub_type=plan.type,
            param=dict(plan.param),
            locate=plan.locate,
            thought=plan.thought,
            executor=body,
        )

    def _error_task(self, message: str) -> ExecutionTask:
        return self._action_task(
            PlanAction(type="Error", param={"thought": message}, thought=message),
            {},
        )

    def _convert_plans(self, plans: List[PlanAction]) -> List[ExecutionTask]:
        state: PipelineState = {}
        tasks = []
        for plan in plans:
            if plan.type == LOCATE_ACTION:
                tasks.append(self._locate_task(plan, state))
            else:
                tasks.append(self._action_task(plan, state))
        return tasks

    @staticmethod
    def _expand_planned_action(action: PlanAction) -> List[PlanAction]:
        """规划出的动作带有目标时，先插入一次 Locate"""
        if action.locate and action.type != LOCATE_ACTION:
            locate = PlanAction(
                type=LOCATE_ACTION,
                param=dict(action.locate),
                locate=dict(action.locate),
                thought=action.thought,
            )
            return [locate, action]
        return [action]

    def _planning_task(
        self,
        prompt: str,
        action_context: Optional[str],
        state: PipelineState,
    ) -> ExecutionTask:
        async def body(task: ExecutionTask) -> TaskOutcome:
            snapshot = await self.page.snapshot()
            key = f"{prompt}\n{action_context}" if action_context else prompt
            result, cache = await self._cached_call(
                "plan",
                key,
                snapshot,
                lambda: self.inference.plan(prompt, snapshot, action_context),
                PlanResult.from_dict,
                lambda r: bool(r.actions) and not any(a.type == "Error" for a in r.actions),
            )
            if not result.actions and result.more_actions_needed:
                raise RuntimeError(f"No plans found for instruction: {prompt}")
            state["plan"] = result
            return TaskOutcome(
                output=result,
                thought=result.thought,
                usage=result.usage,
                cache=cache,
                plans=result.actions,
            )

        return ExecutionTask(
            type=TaskType.PLANNING,
            param={"userInstruction": prompt},
            executor=body,
        )

    # ==================== 指令 ====================

    async def run_plans(self, title: str, plans: List[PlanAction]) -> ExecutorResult:
        executor = self._new_executor(title)
        executor.append(self._convert_plans(plans))
        output = await executor.flush()
        return ExecutorResult(executor, output)

    async def action(self, prompt: str, action_context: Optional[str] = None) -> ExecutorResult:
        """
        规划并执行自然语言指令

        每轮：Planning 子操作 → 执行规划出的动作；
        推理服务表示还需要更多动作时重新规划，最多 max_replan_cycles 轮。
        """
        executor = self._new_executor(task_title_str("Action", prompt))
        max_cycles = self.settings.max_replan_cycles
        output = None

        for cycle in range(max_cycles):
            state: PipelineState = {}
            executor.append([self._planning_task(prompt, action_context, state)])
            await executor.flush()
            if executor.is_in_error_state():
                return ExecutorResult(executor, None)

            plan: PlanResult = state["plan"]
            plans: List[PlanAction] = []
            for action in plan.actions:
                plans.extend(self._expand_planned_action(action))
            executor.append(self._convert_plans(plans))
            output = await executor.flush()

            if executor.is_in_error_state() or not plan.more_actions_needed:
                return ExecutorResult(executor, output)
            logger.debug(f"🔁 [PageTaskExecutor] 第 {cycle + 1} 轮执行完成，重新规划: {prompt}")

        executor.append([self._error_task(f"Replanned {max_cycles} times, which exceeds the limit")])
        await executor.flush()
        return ExecutorResult(executor, output)

    async def _extract(self, sub_type: str, demand: Any, result_key: Optional[str] = None) -> ExecutorResult:
        demand_text = demand if isinstance(demand, str) else json.dumps(demand, ensure_ascii=False)
        executor = self._new_executor(task_title_str(sub_type, demand_text))

        async def body(task: ExecutionTask) -> TaskOutcome:
            snapshot = await self.page.snapshot()
            result = await self.inference.extract(demand, snapshot)
            data = result.data
            if result_key and isinstance(data, dict):
                data = data.get(result_key)
            return TaskOutcome(output=data, thought=result.thought, usage=result.usage)

        executor.append([ExecutionTask(
            type=TaskType.INSIGHT,
            sub_type=sub_type,
            param={"demand": demand},
            executor=body,
        )])
        output = await executor.flush()
        return ExecutorResult(executor, output)

    async def query(self, demand: Any) -> ExecutorResult:
        return await self._extract("Query", demand)

    async def boolean(self, prompt: str) -> ExecutorResult:
        demand = {"result": f"Boolean, whether the following statement is true: {prompt}"}
        return await self._extract("Boolean", demand, "result")

    async def number(self, prompt: str) -> ExecutorResult:
        return await self._extract("Number", {"result": f"Number, {prompt}"}, "result")

    async def string(self, prompt: str) -> ExecutorResult:
        return await self._extract("String", {"result": f"String, {prompt}"}, "result")

    def _assert_task(self, assertion: str, system_prompt: Optional[str]) -> ExecutionTask:
        async def body(task: ExecutionTask) -> TaskOutcome:
            snapshot = await self.page.snapshot()
            result = await self.inference.assert_(assertion, snapshot, system_prompt)
            return TaskOutcome(output=result, thought=result.thought, usage=result.usage)

        return ExecutionTask(
            type=TaskType.ASSERT,
            sub_type="Assert",
            param={"assertion": assertion},
            executor=body,
        )

    async def assert_(self, assertion: str, system_prompt: Optional[str] = None) -> ExecutorResult:
        """断言结果（AssertResult）作为 output 返回，未通过不视为子操作失败"""
        executor = self._new_executor(task_title_str("Assert", assertion))
        executor.append([self._assert_task(assertion, system_prompt)])
        output = await executor.flush()
        return ExecutorResult(executor, output)

    async def wait_for(
        self,
        assertion: str,
        timeout_ms: int,
        check_interval_ms: int,
    ) -> ExecutorResult:
        """
        重复断言直到通过或超时

        每次检查不足 check_interval_ms 时补一个 Sleep 子操作；
        超时后追加一个失败的 Error 子操作。断言调用本身失败时立即返回。
        """
        executor = self._new_executor(task_title_str("WaitFor", assertion))
        overall_start = time.monotonic()
        error_thought = ""

        while (time.monotonic() - overall_start) * 1000 < timeout_ms:
            check_start = time.monotonic()
            executor.append([self._assert_task(assertion, None)])
            output = await executor.flush()

            if executor.is_in_error_state():
                return ExecutorResult(executor, None)
            if output is not None and output.passed:
                return ExecutorResult(executor, None)

            error_thought = (output.thought if output else None) or (
                f"unknown error when waiting for assertion: {assertion}"
            )
            elapsed_ms = (time.monotonic() - check_start) * 1000
            if elapsed_ms < check_interval_ms:
                sleep_plan = PlanAction(type="Sleep", param={"timeMs": int(check_interval_ms - elapsed_ms)})
                executor.append([self._action_task(sleep_plan, {})])
                await executor.flush()

        logger.debug(f"⏰ [PageTaskExecutor] waitFor 超时: {assertion}")
        executor.append([self._error_task(f"waitFor timeout: {error_thought}")])
        await executor.flush()
        return ExecutorResult(executor, None)
