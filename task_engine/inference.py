"""
推理服务接口

PageTaskExecutor 通过 InferenceService 完成规划、元素定位、
数据提取和断言；ChatCompletionInference 是基于
OpenAI 兼容 /v1/chat/completions 接口（vLLM 等）的实现。
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from loguru import logger

from config import Settings, get_settings
from .models import LocatedElement, PlanAction, TaskUsage
from .page import PageSnapshot
from .planner import parse_json_content


class InferenceError(RuntimeError):
    """推理服务调用失败"""


def _usage_dict(usage: Optional[TaskUsage]) -> Optional[Dict[str, int]]:
    return usage.to_dict() if usage else None


@dataclass
class PlanResult:
    """
    规划结果

    Attributes:
        actions: 本轮规划出的原子动作
        thought: 规划理由
        more_actions_needed: 执行完本轮动作后是否还需要再次规划
    """
    actions: List[PlanAction] = field(default_factory=list)
    thought: Optional[str] = None
    more_actions_needed: bool = False
    usage: Optional[TaskUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "thought": self.thought,
            "more_actions_needed": self.more_actions_needed,
            "usage": _usage_dict(self.usage),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanResult":
        return cls(
            actions=[PlanAction.from_dict(a) for a in data.get("actions") or []],
            thought=data.get("thought"),
            more_actions_needed=bool(data.get("more_actions_needed", False)),
            usage=TaskUsage.from_dict(data.get("usage")),
        )


@dataclass
class LocateResult:
    element: Optional[LocatedElement] = None
    thought: Optional[str] = None
    usage: Optional[TaskUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "element": self.element.to_dict() if self.element else None,
            "thought": self.thought,
            "usage": _usage_dict(self.usage),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocateResult":
        return cls(
            element=LocatedElement.from_dict(data.get("element")),
            thought=data.get("thought"),
            usage=TaskUsage.from_dict(data.get("usage")),
        )


@dataclass
class ExtractResult:
    data: Any = None
    thought: Optional[str] = None
    usage: Optional[TaskUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "thought": self.thought, "usage": _usage_dict(self.usage)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractResult":
        return cls(
            data=data.get("data"),
            thought=data.get("thought"),
            usage=TaskUsage.from_dict(data.get("usage")),
        )


@dataclass
class AssertResult:
    passed: bool = False
    thought: Optional[str] = None
    usage: Optional[TaskUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"pass": self.passed, "thought": self.thought, "usage": _usage_dict(self.usage)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssertResult":
        return cls(
            passed=bool(data.get("pass", False)),
            thought=data.get("thought"),
            usage=TaskUsage.from_dict(data.get("usage")),
        )


class InferenceService(ABC):
    """推理服务接口"""

    @abstractmethod
    async def plan(
        self,
        instruction: str,
        snapshot: PageSnapshot,
        action_context: Optional[str] = None,
    ) -> PlanResult:
        pass

    @abstractmethod
    async def locate(
        self,
        prompt: str,
        snapshot: PageSnapshot,
        options: Optional[Dict[str, Any]] = None,
    ) -> LocateResult:
        """
        定位元素

        Args:
            options: 定位选项，例如 {"deepThink": True} 要求先聚焦目标区域再细致分析
        """
        pass

    @abstractmethod
    async def extract(self, demand: Any, snapshot: PageSnapshot) -> ExtractResult:
        pass

    @abstractmethod
    async def assert_(
        self,
        assertion: str,
        snapshot: PageSnapshot,
        system_prompt: Optional[str] = None,
    ) -> AssertResult:
        pass

    @abstractmethod
    async def complete_text(self, messages: List[Dict[str, str]]) -> str:
        """短文本补全，供步骤摘要使用"""
        pass


_PLAN_SYSTEM_PROMPT = """You are a UI automation planner. Given the user's instruction and the current page, \
decide the next atomic actions.

Supported action types:
- Tap / Hover: {"locate": {"prompt": "<element description>"}}
- Input: {"locate": {"prompt": "..."}, "param": {"value": "<text>"}}
- KeyboardPress: {"param": {"value": "<key name>"}}
- Scroll: {"param": {"direction": "up|down|left|right", "scrollType": "once|untilBottom|untilTop", "distance": <px>}}
- Sleep: {"param": {"timeMs": <ms>}}
- Finished: the instruction is already complete
- Error: the instruction cannot be completed, explain in "thought"

Reply ONLY with JSON:
{"actions": [{"type": "...", "param": {...}, "locate": {...} | null, "thought": "..."}],
 "thought": "...", "more_actions_needed_by_instruction": true | false}
"""

_LOCATE_SYSTEM_PROMPT = """You locate UI elements. Given an element description and the page's element list, \
pick the matching element id.
Reply ONLY with JSON: {"id": "<element id or null>", "thought": "..."}
"""

_DEEP_THINK_LOCATE_HINT = (
    "Think deeply: first narrow down the region of the page that contains the target, "
    "then compare every candidate element in that region before choosing an id."
)

_EXTRACT_SYSTEM_PROMPT = """You extract data from a page. Return data in the shape the user demands.
Reply ONLY with JSON: {"data": <extracted data>, "thought": "..."}
"""

_ASSERT_SYSTEM_PROMPT = """You verify assertions about a page. Decide whether the assertion is true.
Reply ONLY with JSON: {"pass": true | false, "thought": "<reason>"}
"""


class ChatCompletionInference(InferenceService):
    """
    OpenAI 兼容接口推理服务

    使用方式：
        inference = ChatCompletionInference(settings)
        plan = await inference.plan("点击登录按钮", snapshot)
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.api_url = (self.settings.vllm_api_url or "").rstrip("/")
        self.api_token = self.settings.vllm_api_token
        self.model = self.settings.vllm_model
        self.timeout = self.settings.inference_timeout
        self.max_tokens = self.settings.inference_max_tokens

    async def _chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.1,
    ) -> Tuple[str, Optional[TaskUsage]]:
        if not self.api_url:
            raise InferenceError("vllm_api_url is not configured")

        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.max_tokens,
        }

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                f"{self.api_url}/v1/chat/completions",
                json=payload,
                headers=headers,
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"❌ [Inference] API 错误: {response.status} - {error_text}")
                    raise InferenceError(f"inference API error {response.status}: {error_text}")

                result = await response.json()

        content = (result["choices"][0]["message"].get("content") or "").strip()
        usage = TaskUsage.from_dict(result.get("usage"))
        return content, usage

    async def _chat_json(self, system_prompt: str, user_content: str) -> Tuple[Dict[str, Any], Optional[TaskUsage]]:
        content, usage = await self._chat([
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ])
        try:
            parsed = parse_json_content(content)
        except ValueError as e:
            raise InferenceError(str(e)) from e
        if not isinstance(parsed, dict):
            raise InferenceError(f"unexpected inference response: {content[:200]}")
        return parsed, usage

    async def plan(self, instruction, snapshot, action_context=None) -> PlanResult:
        system_prompt = _PLAN_SYSTEM_PROMPT
        if action_context:
            system_prompt = f"{system_prompt}\n\n{action_context}"
        parsed, usage = await self._chat_json(
            system_prompt,
            f"Instruction: {instruction}\n\n{snapshot.describe()}",
        )
        actions = [PlanAction.from_dict(a) for a in parsed.get("actions") or [] if a.get("type")]
        logger.debug(f"📋 [Inference] 规划结果: {[a.type for a in actions]}")
        return PlanResult(
            actions=actions,
            thought=parsed.get("thought"),
            more_actions_needed=bool(parsed.get("more_actions_needed_by_instruction", False)),
            usage=usage,
        )

    async def locate(self, prompt, snapshot, options=None) -> LocateResult:
        system_prompt = _LOCATE_SYSTEM_PROMPT
        if options and options.get("deepThink"):
            system_prompt = f"{system_prompt}\n{_DEEP_THINK_LOCATE_HINT}"
        parsed, usage = await self._chat_json(
            system_prompt,
            f"Element description: {prompt}\n\n{snapshot.describe()}",
        )
        element_id = parsed.get("id")
        element = snapshot.find_element(element_id) if element_id is not None else None
        return LocateResult(element=element, thought=parsed.get("thought"), usage=usage)

    async def extract(self, demand, snapshot) -> ExtractResult:
        demand_text = demand if isinstance(demand, str) else json.dumps(demand, ensure_ascii=False)
        parsed, usage = await self._chat_json(
            _EXTRACT_SYSTEM_PROMPT,
            f"Demand: {demand_text}\n\n{snapshot.describe()}",
        )
        return ExtractResult(data=parsed.get("data"), thought=parsed.get("thought"), usage=usage)

    async def assert_(self, assertion, snapshot, system_prompt=None) -> AssertResult:
        prompt = _ASSERT_SYSTEM_PROMPT
        if system_prompt:
            prompt = f"{prompt}\n{system_prompt}"
        parsed, usage = await self._chat_json(
            prompt,
            f"Assertion: {assertion}\n\n{snapshot.describe()}",
        )
        return AssertResult(passed=bool(parsed.get("pass", False)), thought=parsed.get("thought"), usage=usage)

    async def complete_text(self, messages) -> str:
        content, _ = await self._chat(messages, temperature=0.3)
        return content
