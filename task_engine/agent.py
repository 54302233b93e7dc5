"""
PageAgent - 面向调用方的 AI 页面操作入口

每个 ai_* 调用：
1. （启用上下文引擎时）在 ContextEngine 中打开一个步骤
2. 通过 PageTaskExecutor 运行子操作管线
3. 由 Executor 的子操作列表推导结果元数据
4. 执行结束后关闭步骤（成功 / 失败），失败对后续步骤的摘要可见

ai_action 的 prompt 上下文 = 基础上下文 + 已完成步骤的编号摘要。
"""
import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from loguru import logger

from config import Settings, get_settings
from context_engine import (
    ActionContextIntegrator,
    AISummarizer,
    ContextEngine,
    ContextSnapshot,
)
from .cache import TaskCache
from .errors import AssertionFailedError, TaskExecutionError, TaskTimeoutError
from .executor import Executor
from .inference import AssertResult, InferenceService
from .metadata import AITaskResult, TaskMetadata, build_task_metadata
from .models import ExecutionTask
from .page import AbstractPage
from .planner import build_plans
from .reporter import locate_param_str, scroll_param_str, task_tip, task_title_str
from .tasks import ExecutorResult, PageTaskExecutor
from .verifier import verify

T = TypeVar("T")

OnTaskStartTip = Callable[[str], Awaitable[None]]

SUMMARY_HEADER = "### Previous Actions Summary"

CAPTCHA_SOLVE_PROMPT = (
    "Solve the captcha on this page. Identify if it's text or image based, "
    "then solve it accordingly. Take your time to analyze each element carefully."
)

CAPTCHA_CHECK_PROMPT = (
    "Check if there is still a captcha visible on the page. If you see a captcha, "
    "respond with 'CAPTCHA_PRESENT'. If not, respond with 'NO_CAPTCHA'."
)

_CAPTCHA_SYSTEM_PROMPT = """You are a captcha solving assistant. Your task is to analyze the page and solve any captcha present on it.
{deep_think}
CAPTCHA IDENTIFICATION:
1. First, identify if there's a captcha on the page
2. Determine if it's a text-based captcha or an image-based captcha

TEXT-BASED CAPTCHA SOLVING STEPS:
1. Carefully read and interpret the text in the captcha image
2. If the text is distorted, try different interpretations
3. Find the input field where the solution should be entered
4. Enter the solution text
5. Find and click the submit/verify button

IMAGE-BASED CAPTCHA SOLVING STEPS:
1. Identify the task (e.g., "select all images with cars")
2. Analyze each image carefully
3. Click on ALL images that match the criteria
4. Find and click the verify/submit button
5. If new images appear after clicking, repeat the process

GENERAL GUIDELINES:
- Be thorough and methodical in your analysis
- If you can't solve with high confidence, explain why
- If the captcha changes after an attempt, adapt and solve the new one

IMPORTANT: Execute each step one by one, and verify the results before proceeding to the next step."""

_DEEP_THINK_HINT = (
    "IMPORTANT: Use deep thinking mode to carefully analyze the captcha. Take extra time to "
    "focus on the captcha area and analyze it in detail before taking any action.\n"
)


def _log_late_completion(task: "asyncio.Future") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"🧟 [PageAgent] 超时后的调用以异常结束: {error}")
    else:
        logger.warning("🧟 [PageAgent] 超时后的调用仍然完成，其副作用已生效")


async def race_with_timeout(aw: Awaitable[T], timeout_ms: int, message: str) -> T:
    """
    等待 aw 最多 timeout_ms 毫秒

    超时只停止等待，不取消底层调用；底层调用稍后完成时记录日志。

    Raises:
        TaskTimeoutError: 超时
    """
    task = asyncio.ensure_future(aw)
    done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    if task in done:
        return task.result()

    logger.warning(f"⏰ [PageAgent] {message} ({timeout_ms}ms)，底层调用继续运行")
    task.add_done_callback(_log_late_completion)
    raise TaskTimeoutError(message)


class PageAgent:
    """
    AI 页面操作代理

    使用方式：
        agent = PageAgent(page, ChatCompletionInference(settings), settings=settings,
                          use_context_engine=True)
        await agent.ai_action("在搜索框输入 python 并回车")
        result = await agent.ai_query({"titles": "搜索结果标题列表"})
        await agent.destroy()
    """

    def __init__(
        self,
        page: AbstractPage,
        inference: InferenceService,
        cache: Optional[TaskCache] = None,
        settings: Optional[Settings] = None,
        use_context_engine: Optional[bool] = None,
        context_engine_max_steps: Optional[int] = None,
        group_name: Optional[str] = None,
        group_description: Optional[str] = None,
        ai_action_context: Optional[str] = None,
        on_task_start_tip: Optional[OnTaskStartTip] = None,
        summarizer: Optional[AISummarizer] = None,
    ):
        self.settings = settings or get_settings()
        self.page = page
        self.inference = inference
        self.cache = cache
        self.group_name = group_name or self.settings.group_name
        self.group_description = group_description or self.settings.group_description
        self.ai_action_context = ai_action_context
        self.on_task_start_tip = on_task_start_tip
        self.executions: List[Dict[str, Any]] = []

        self.task_executor = PageTaskExecutor(
            page,
            inference,
            cache=cache,
            settings=self.settings,
            on_task_start=self._callback_on_task_start_tip,
        )

        if use_context_engine is None:
            use_context_engine = self.settings.use_context_engine
        self.use_context_engine = use_context_engine

        self.context_engine: Optional[ContextEngine] = None
        self.action_context_integrator: Optional[ActionContextIntegrator] = None
        if self.use_context_engine:
            if summarizer is None and self.settings.use_ai_summaries:
                summarizer = AISummarizer(inference.complete_text)
            self.context_engine = ContextEngine(
                max_steps=context_engine_max_steps or self.settings.context_engine_max_steps,
                use_ai_summaries=self.settings.use_ai_summaries,
                summarizer=summarizer,
            )
            self.action_context_integrator = ActionContextIntegrator(self.context_engine)
            logger.info(f"🧠 [PageAgent] 上下文引擎已启用: {self.group_name}")

    # ==================== 内部工具 ====================

    async def _callback_on_task_start_tip(self, task: ExecutionTask) -> None:
        if self.on_task_start_tip:
            await self.on_task_start_tip(task_tip(task))

    async def _ensure_run(self) -> None:
        if not self.context_engine.has_active_run:
            await self.context_engine.start_run(self.group_name, self.group_description or None)

    async def _recorded(
        self,
        action: str,
        description: str,
        fn: Callable[[], Awaitable[T]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> T:
        """启用上下文引擎时把调用记录为一个步骤"""
        if self.action_context_integrator is None:
            return await fn()
        await self._ensure_run()
        return await self.action_context_integrator.wrap_with_action_recording(
            action, description, fn, metadata
        )

    def _effective_action_context(self) -> Optional[str]:
        context = self.ai_action_context
        if self.action_context_integrator is None:
            return context
        digest = self.action_context_integrator.get_action_summaries()
        if not digest:
            return context
        block = f"{SUMMARY_HEADER}\n{digest}"
        return f"{context}\n\n{block}" if context else block

    def _after_task_running(
        self,
        executor: Executor,
        prompt: str,
        tolerate_failure: bool = False,
    ) -> TaskMetadata:
        self.executions.append(executor.dump())
        verify(executor, prompt, tolerate_failure)
        return build_task_metadata(executor)

    @staticmethod
    def _locate_param(locate_prompt: str, opt: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not locate_prompt:
            raise ValueError("missing locate prompt")
        return {"prompt": locate_prompt, **(opt or {})}

    async def _execute_plans(
        self,
        action_type: str,
        locate: Optional[Dict[str, Any]] = None,
        param: Optional[Dict[str, Any]] = None,
        title_param: Optional[str] = None,
    ) -> AITaskResult:
        plans = build_plans(action_type, locate, param)
        if title_param is None:
            title_param = locate_param_str(locate)
        title = task_title_str(action_type, title_param)
        result = await self.task_executor.run_plans(title, plans)
        metadata = self._after_task_running(result.executor, title)
        return AITaskResult(result.output, metadata)

    # ==================== 指定动作 ====================

    async def ai_tap(self, locate_prompt: str, opt: Optional[Dict[str, Any]] = None) -> AITaskResult:
        locate = self._locate_param(locate_prompt, opt)

        async def run() -> AITaskResult:
            return await self._execute_plans("Tap", locate)

        return await self._recorded("ai_tap", locate_prompt, run, {"locate": locate_prompt, "sub_type": "Tap"})

    async def ai_hover(self, locate_prompt: str, opt: Optional[Dict[str, Any]] = None) -> AITaskResult:
        locate = self._locate_param(locate_prompt, opt)

        async def run() -> AITaskResult:
            return await self._execute_plans("Hover", locate)

        return await self._recorded("ai_hover", locate_prompt, run, {"locate": locate_prompt, "sub_type": "Hover"})

    async def ai_input(
        self,
        value: str,
        locate_prompt: str,
        opt: Optional[Dict[str, Any]] = None,
    ) -> AITaskResult:
        if not isinstance(value, str):
            raise TypeError("input value must be a string, use empty string if you want to clear the input")
        locate = self._locate_param(locate_prompt, opt)

        async def run() -> AITaskResult:
            return await self._execute_plans("Input", locate, {"value": value})

        return await self._recorded(
            "ai_input",
            f"{locate_prompt} <- {value}",
            run,
            {"locate": locate_prompt, "value": value, "sub_type": "Input"},
        )

    async def ai_keyboard_press(
        self,
        key_name: str,
        locate_prompt: Optional[str] = None,
        opt: Optional[Dict[str, Any]] = None,
    ) -> AITaskResult:
        if not key_name:
            raise ValueError("missing key_name for keyboard press")
        locate = self._locate_param(locate_prompt, opt) if locate_prompt else None

        async def run() -> AITaskResult:
            return await self._execute_plans("KeyboardPress", locate, {"value": key_name})

        return await self._recorded(
            "ai_keyboard_press",
            key_name,
            run,
            {"locate": locate_prompt, "value": key_name, "sub_type": "KeyboardPress"},
        )

    async def ai_scroll(
        self,
        scroll_param: Dict[str, Any],
        locate_prompt: Optional[str] = None,
        opt: Optional[Dict[str, Any]] = None,
    ) -> AITaskResult:
        locate = self._locate_param(locate_prompt, opt) if locate_prompt else None
        title_param = scroll_param_str(scroll_param)
        if locate_prompt:
            title_param = f"{locate_prompt} - {title_param}"

        async def run() -> AITaskResult:
            return await self._execute_plans("Scroll", locate, scroll_param, title_param)

        return await self._recorded(
            "ai_scroll",
            title_param,
            run,
            {"locate": locate_prompt, "sub_type": "Scroll", "extra": {"scroll": scroll_param}},
        )

    async def ai_locate(self, prompt: str, opt: Optional[Dict[str, Any]] = None) -> AITaskResult:
        locate = self._locate_param(prompt, opt)

        async def run() -> AITaskResult:
            result = await self._execute_plans("Locate", locate)
            element = (result.result or {}).get("element")
            return AITaskResult(
                {
                    "rect": element.rect if element else None,
                    "center": element.center if element else None,
                },
                result.metadata,
            )

        return await self._recorded("ai_locate", prompt, run, {"locate": prompt, "sub_type": "Locate"})

    # ==================== 自然语言指令 ====================

    async def ai_action(self, task_prompt: str) -> AITaskResult:
        """规划并执行自然语言指令，prompt 上下文附带已完成步骤的摘要"""

        async def run() -> AITaskResult:
            action_context = self._effective_action_context()
            result = await self.task_executor.action(task_prompt, action_context)
            metadata = self._after_task_running(result.executor, task_prompt)
            return AITaskResult(result.output, metadata)

        return await self._recorded("ai_action", task_prompt, run, {"prompt": task_prompt})

    async def _ai_extract(
        self,
        action: str,
        prompt: Any,
        call: Callable[[Any], Awaitable[ExecutorResult]],
    ) -> AITaskResult:
        description = prompt if isinstance(prompt, str) else json.dumps(prompt, ensure_ascii=False)

        async def run() -> AITaskResult:
            result = await call(prompt)
            metadata = self._after_task_running(result.executor, description)
            return AITaskResult(result.output, metadata)

        return await self._recorded(action, description, run, {"prompt": description})

    async def ai_query(self, demand: Any) -> AITaskResult:
        return await self._ai_extract("ai_query", demand, self.task_executor.query)

    async def ai_boolean(self, prompt: str) -> AITaskResult:
        return await self._ai_extract("ai_boolean", prompt, self.task_executor.boolean)

    async def ai_number(self, prompt: str) -> AITaskResult:
        return await self._ai_extract("ai_number", prompt, self.task_executor.number)

    async def ai_string(self, prompt: str) -> AITaskResult:
        return await self._ai_extract("ai_string", prompt, self.task_executor.string)

    async def ai_assert(
        self,
        assertion: str,
        msg: Optional[str] = None,
        keep_raw_response: bool = False,
    ) -> AITaskResult:
        """
        断言页面状态

        断言子操作失败不直接抛出；断言未通过时抛出 AssertionFailedError，
        原因取断言的 thought，其次取最后一个失败子操作的错误信息。
        """

        async def run() -> AITaskResult:
            current_url = await self.page.url()
            result = await self.task_executor.assert_(assertion, f"Current URL: {current_url}")
            metadata = self._after_task_running(result.executor, assertion, tolerate_failure=True)
            output: Optional[AssertResult] = result.output

            if output is not None and keep_raw_response:
                return AITaskResult(output, metadata)

            if output is None or not output.passed:
                error_task = result.executor.latest_error_task()
                reason = (output.thought if output else None) or (error_task.error if error_task else None)
                raise AssertionFailedError(assertion, reason, msg)

            return AITaskResult(output, metadata)

        return await self._recorded("ai_assert", assertion, run, {"prompt": assertion})

    async def ai_wait_for(
        self,
        assertion: str,
        timeout_ms: Optional[int] = None,
        check_interval_ms: Optional[int] = None,
    ) -> AITaskResult:
        """等待断言成立；超时不抛出，result 为 False"""

        async def run() -> AITaskResult:
            result = await self.task_executor.wait_for(
                assertion,
                timeout_ms=timeout_ms or self.settings.wait_for_timeout_ms,
                check_interval_ms=check_interval_ms or self.settings.wait_for_check_interval_ms,
            )
            metadata = self._after_task_running(result.executor, assertion, tolerate_failure=True)
            return AITaskResult(not result.executor.is_in_error_state(), metadata)

        return await self._recorded("ai_wait_for", assertion, run, {"prompt": assertion})

    async def ai(self, task_prompt: str, type: str = "action") -> AITaskResult:
        if type == "action":
            return await self.ai_action(task_prompt)
        if type == "query":
            return await self.ai_query(task_prompt)
        if type == "assert":
            return await self.ai_assert(task_prompt)
        if type == "tap":
            return await self.ai_tap(task_prompt)
        raise ValueError(f"Unknown type: {type}, only support 'action', 'query', 'assert', 'tap'")

    # ==================== 验证码 ====================

    async def _captcha_still_exists(self) -> bool:
        """检查验证码是否仍然存在，检查失败时按仍存在处理"""
        try:
            result = await self.ai_action(CAPTCHA_CHECK_PROMPT)
        except Exception as e:
            logger.warning(f"⚠️ [PageAgent] 验证码检查失败，按仍存在处理: {e}")
            return True
        output = result.to_dict()["result"]
        text = output if isinstance(output, str) else json.dumps(output, ensure_ascii=False, default=str)
        return "CAPTCHA_PRESENT" in text

    async def ai_captcha(
        self,
        max_attempts: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        custom_instructions: Optional[str] = None,
        deep_think: bool = False,
    ) -> AITaskResult:
        """
        识别并解决页面上的验证码

        每次尝试与计时器竞速；超时只停止等待，上一次尝试的调用可能在之后完成。
        验证码仍存在时重试，全部尝试都抛出异常时抛出最后一个异常。
        """
        max_attempts = max_attempts or self.settings.captcha_max_attempts
        timeout_ms = timeout_ms or self.settings.captcha_timeout_ms
        retry_delay = self.settings.captcha_retry_delay_ms / 1000

        system_prompt = f"Current URL: {await self.page.url()}\n\n" + _CAPTCHA_SYSTEM_PROMPT.format(
            deep_think=_DEEP_THINK_HINT if deep_think else ""
        )
        if custom_instructions:
            system_prompt += f"\n\nCUSTOM INSTRUCTIONS:\n{custom_instructions}"

        async def run() -> AITaskResult:
            nonlocal system_prompt
            last_error: Optional[BaseException] = None

            for attempt in range(1, max_attempts + 1):
                try:
                    if deep_think:
                        call = self.task_executor.run_plans(
                            task_title_str("Locate", "Captcha with deepThink"),
                            build_plans("Locate", {"prompt": CAPTCHA_SOLVE_PROMPT, "deepThink": True}),
                        )
                    else:
                        call = self.task_executor.action(CAPTCHA_SOLVE_PROMPT, system_prompt)

                    result = await race_with_timeout(call, timeout_ms, "Captcha solving timed out")
                    metadata = self._after_task_running(result.executor, CAPTCHA_SOLVE_PROMPT)
                    if deep_think:
                        metadata.deepthink = {"used": True, "mode": "captcha-analysis"}

                    output = result.output
                    payload = dict(output) if isinstance(output, dict) else {"output": output}
                    payload.update({"attempt": attempt, "usedDeepThink": deep_think})

                    if not await self._captcha_still_exists():
                        logger.info(f"✅ [PageAgent] 验证码已解决 (attempt {attempt})")
                        payload["success"] = True
                        return AITaskResult(payload, metadata)

                    if attempt >= max_attempts:
                        payload["success"] = False
                        payload["error"] = "Failed to solve captcha after maximum attempts"
                        return AITaskResult(payload, metadata)

                    logger.info(f"🔁 [PageAgent] 验证码仍存在，准备第 {attempt + 1} 次尝试")
                    await asyncio.sleep(retry_delay)
                    system_prompt += (
                        f"\n\nIMPORTANT: This is attempt {attempt + 1} of {max_attempts}. "
                        "The previous attempt was unsuccessful. Try a different approach."
                    )
                except (TaskExecutionError, TaskTimeoutError) as e:
                    last_error = e
                    logger.warning(f"⚠️ [PageAgent] 验证码第 {attempt} 次尝试失败: {e}")
                    if attempt < max_attempts:
                        await asyncio.sleep(retry_delay)

            if last_error is not None:
                raise last_error
            raise TaskExecutionError(CAPTCHA_SOLVE_PROMPT, "Failed to solve captcha after maximum attempts")

        return await self._recorded("ai_captcha", "solve captcha", run, {"attempt": max_attempts})

    # ==================== 状态 ====================

    def get_context_snapshot(self) -> Optional[ContextSnapshot]:
        """上下文引擎状态的只读快照，未启用时返回 None"""
        if self.context_engine is None:
            return None
        return self.context_engine.snapshot()

    def set_ai_action_context(self, prompt: Optional[str]) -> None:
        self.ai_action_context = prompt

    def dump_data(self) -> Dict[str, Any]:
        return {
            "groupName": self.group_name,
            "groupDescription": self.group_description,
            "executions": list(self.executions),
        }

    async def destroy(self) -> None:
        """结束当前运行并销毁页面"""
        if self.context_engine is not None:
            await self.context_engine.complete_run()
        await self.page.destroy()
