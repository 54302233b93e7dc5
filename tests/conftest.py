"""
Test configuration
"""
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))

from config import Settings  # noqa: E402
from task_engine.inference import (  # noqa: E402
    AssertResult,
    ExtractResult,
    InferenceService,
    LocateResult,
    PlanResult,
)
from task_engine.models import LocatedElement, PlanAction, TaskUsage  # noqa: E402
from task_engine.page import AbstractPage, PageSnapshot  # noqa: E402


LOGIN_BUTTON = {
    "id": "btn-login",
    "text": "Login",
    "rect": {"left": 10, "top": 20, "width": 100, "height": 30},
    "center": [60, 35],
}
SEARCH_INPUT = {
    "id": "input-search",
    "text": "",
    "rect": {"left": 0, "top": 0, "width": 300, "height": 40},
    "center": [150, 20],
}


class FakePage(AbstractPage):
    """记录所有动作的内存页面"""

    page_type = "fake"

    def __init__(self, url: str = "https://example.com/login", content: str = "<login form>"):
        self._url = url
        self.content = content
        self.elements: List[Dict[str, Any]] = [LOGIN_BUTTON, SEARCH_INPUT]
        self.performed: List[tuple] = []
        self.destroyed = False

    async def snapshot(self) -> PageSnapshot:
        return PageSnapshot(url=self._url, content=self.content, elements=list(self.elements))

    async def url(self) -> str:
        return self._url

    async def perform(self, action: PlanAction, element: Optional[LocatedElement] = None) -> Any:
        self.performed.append((action.type, element.id if element else None, dict(action.param)))
        return {"performed": action.type}

    async def destroy(self) -> None:
        self.destroyed = True


class FakeInference(InferenceService):
    """
    可编排的推理服务

    - plans: 依次返回的 PlanResult 列表（用完后返回 Finished）
    - locate 按 elements 中的文本匹配
    - extract_data / assert_results 为预设返回值
    """

    def __init__(self):
        self.plans: List[PlanResult] = []
        self.calls: Dict[str, int] = {"plan": 0, "locate": 0, "extract": 0, "assert": 0, "complete": 0}
        self.plan_contexts: List[Optional[str]] = []
        self.locate_options: List[Optional[Dict[str, Any]]] = []
        self.extract_data: Any = None
        self.assert_results: List[AssertResult] = []
        self.complete_response = '{"summary": "did something"}'
        self.fail_on: set = set()

    def _usage(self) -> TaskUsage:
        return TaskUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)

    async def plan(self, instruction, snapshot, action_context=None) -> PlanResult:
        self.calls["plan"] += 1
        self.plan_contexts.append(action_context)
        if "plan" in self.fail_on:
            raise RuntimeError("plan service unavailable")
        if self.plans:
            result = self.plans.pop(0)
        else:
            result = PlanResult(actions=[PlanAction(type="Finished")], thought="done")
        result.usage = self._usage()
        return result

    async def locate(self, prompt, snapshot, options=None) -> LocateResult:
        self.calls["locate"] += 1
        self.locate_options.append(options)
        if "locate" in self.fail_on:
            raise RuntimeError("locate service unavailable")
        for element in snapshot.elements:
            if element["text"] and element["text"].lower() in prompt.lower():
                return LocateResult(
                    element=LocatedElement.from_dict(element),
                    thought=f"found {element['id']}",
                    usage=self._usage(),
                )
            if element["id"].split("-")[-1] in prompt.lower():
                return LocateResult(
                    element=LocatedElement.from_dict(element),
                    thought=f"found {element['id']}",
                    usage=self._usage(),
                )
        return LocateResult(element=None, thought="no such element", usage=self._usage())

    async def extract(self, demand, snapshot) -> ExtractResult:
        self.calls["extract"] += 1
        if "extract" in self.fail_on:
            raise RuntimeError("extract service unavailable")
        return ExtractResult(data=self.extract_data, thought="extracted", usage=self._usage())

    async def assert_(self, assertion, snapshot, system_prompt=None) -> AssertResult:
        self.calls["assert"] += 1
        if "assert" in self.fail_on:
            raise RuntimeError("assert service unavailable")
        if self.assert_results:
            return self.assert_results.pop(0)
        return AssertResult(passed=True, thought="looks right")

    async def complete_text(self, messages) -> str:
        self.calls["complete"] += 1
        if "complete" in self.fail_on:
            raise RuntimeError("summary service unavailable")
        return self.complete_response


@pytest.fixture
def test_settings():
    """不读取 .env 的测试配置"""
    return Settings(
        _env_file=None,
        vllm_api_url="http://inference.test",
        redis_url=None,
        use_ai_summaries=False,
        wait_for_timeout_ms=200,
        wait_for_check_interval_ms=20,
        captcha_timeout_ms=200,
        captcha_retry_delay_ms=0,
    )


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def fake_inference():
    return FakeInference()
