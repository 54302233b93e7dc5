"""
ChatCompletionInference 单元测试（mock aiohttp）
"""
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

# 确保项目根目录在 sys.path 中
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))


def _mock_session(content, status=200, usage=None):
    """构造返回指定 content 的 aiohttp.ClientSession mock"""
    body = {"choices": [{"message": {"content": content}}]}
    if usage:
        body["usage"] = usage

    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=body)
    mock_resp.text = AsyncMock(return_value="server error")

    mock_session = AsyncMock()
    mock_session.post = MagicMock(return_value=AsyncMock(
        __aenter__=AsyncMock(return_value=mock_resp),
        __aexit__=AsyncMock(return_value=False),
    ))
    return mock_session, AsyncMock(
        __aenter__=AsyncMock(return_value=mock_session),
        __aexit__=AsyncMock(return_value=False),
    )


def _snapshot():
    from task_engine import PageSnapshot
    return PageSnapshot(
        url="https://example.com",
        content="<login form>",
        elements=[{"id": "btn-login", "text": "Login", "rect": {}, "center": [1, 2]}],
    )


class TestChatCompletionInference:
    """测试 OpenAI 兼容推理服务"""

    @pytest.mark.asyncio
    async def test_plan(self, test_settings):
        from task_engine import ChatCompletionInference
        content = json.dumps({
            "actions": [{"type": "Tap", "locate": {"prompt": "login"}, "thought": "tap it"}],
            "thought": "log in",
            "more_actions_needed_by_instruction": True,
        })
        session, factory = _mock_session(
            f"```json\n{content}\n```",
            usage={"prompt_tokens": 100, "completion_tokens": 20, "total_tokens": 120},
        )
        with patch("aiohttp.ClientSession", return_value=factory):
            result = await ChatCompletionInference(test_settings).plan(
                "log in", _snapshot(), "### Previous Actions Summary\n1. opened page"
            )

        assert result.actions[0].type == "Tap"
        assert result.actions[0].locate == {"prompt": "login"}
        assert result.more_actions_needed is True
        assert result.usage.total_tokens == 120

        payload = session.post.call_args.kwargs["json"]
        assert session.post.call_args.args[0] == "http://inference.test/v1/chat/completions"
        assert "### Previous Actions Summary" in payload["messages"][0]["content"]
        assert "log in" in payload["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_locate_resolves_element(self, test_settings):
        from task_engine import ChatCompletionInference
        _, factory = _mock_session('{"id": "btn-login", "thought": "the login button"}')
        with patch("aiohttp.ClientSession", return_value=factory):
            result = await ChatCompletionInference(test_settings).locate("login", _snapshot())
        assert result.element.id == "btn-login"
        assert result.element.center == [1, 2]

    @pytest.mark.asyncio
    async def test_locate_deep_think_hint(self, test_settings):
        from task_engine import ChatCompletionInference
        session, factory = _mock_session('{"id": "btn-login", "thought": "zoomed in"}')
        with patch("aiohttp.ClientSession", return_value=factory):
            await ChatCompletionInference(test_settings).locate("login", _snapshot(), {"deepThink": True})
        system_prompt = session.post.call_args.kwargs["json"]["messages"][0]["content"]
        assert "Think deeply" in system_prompt

    @pytest.mark.asyncio
    async def test_null_content_raises_inference_error(self, test_settings):
        """模型返回 content: null 时抛出 InferenceError"""
        from task_engine import ChatCompletionInference, InferenceError
        _, factory = _mock_session(None)
        with patch("aiohttp.ClientSession", return_value=factory):
            with pytest.raises(InferenceError):
                await ChatCompletionInference(test_settings).locate("login", _snapshot())

    @pytest.mark.asyncio
    async def test_locate_unknown_id(self, test_settings):
        from task_engine import ChatCompletionInference
        _, factory = _mock_session('{"id": "nope", "thought": "guess"}')
        with patch("aiohttp.ClientSession", return_value=factory):
            result = await ChatCompletionInference(test_settings).locate("login", _snapshot())
        assert result.element is None

    @pytest.mark.asyncio
    async def test_assert(self, test_settings):
        from task_engine import ChatCompletionInference
        _, factory = _mock_session('{"pass": false, "thought": "still loading"}')
        with patch("aiohttp.ClientSession", return_value=factory):
            result = await ChatCompletionInference(test_settings).assert_("loaded", _snapshot(), "Current URL: x")
        assert result.passed is False
        assert result.to_dict()["pass"] is False

    @pytest.mark.asyncio
    async def test_extract(self, test_settings):
        from task_engine import ChatCompletionInference
        _, factory = _mock_session('{"data": {"result": 3}, "thought": "counted"}')
        with patch("aiohttp.ClientSession", return_value=factory):
            result = await ChatCompletionInference(test_settings).extract({"result": "Number, items"}, _snapshot())
        assert result.data == {"result": 3}

    @pytest.mark.asyncio
    async def test_non_200_raises(self, test_settings):
        from task_engine import ChatCompletionInference, InferenceError
        _, factory = _mock_session("", status=500)
        with patch("aiohttp.ClientSession", return_value=factory):
            with pytest.raises(InferenceError):
                await ChatCompletionInference(test_settings).complete_text([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_non_json_raises(self, test_settings):
        from task_engine import ChatCompletionInference, InferenceError
        _, factory = _mock_session("I cannot help with that")
        with patch("aiohttp.ClientSession", return_value=factory):
            with pytest.raises(InferenceError):
                await ChatCompletionInference(test_settings).locate("login", _snapshot())

    @pytest.mark.asyncio
    async def test_connection_error_propagates(self, test_settings):
        from task_engine import ChatCompletionInference
        with patch("aiohttp.ClientSession") as mock_cls:
            mock_session = AsyncMock()
            mock_session.post = MagicMock(side_effect=aiohttp.ClientError("连接失败"))
            mock_cls.return_value.__aenter__ = AsyncMock(return_value=mock_session)
            mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            with pytest.raises(aiohttp.ClientError):
                await ChatCompletionInference(test_settings).complete_text([])

    @pytest.mark.asyncio
    async def test_missing_url(self, test_settings):
        from task_engine import ChatCompletionInference, InferenceError
        settings = test_settings.model_copy(update={"vllm_api_url": None})
        with pytest.raises(InferenceError):
            await ChatCompletionInference(settings).complete_text([])

    @pytest.mark.asyncio
    async def test_complete_text_feeds_summarizer(self, test_settings):
        from context_engine import AISummarizer
        from context_engine.models import StepContext, StepStatus
        from task_engine import ChatCompletionInference
        _, factory = _mock_session('{"summary": "Clicked login"}')
        with patch("aiohttp.ClientSession", return_value=factory):
            summarizer = AISummarizer(ChatCompletionInference(test_settings).complete_text)
            step = StepContext(action="ai_tap", description="login", result=StepStatus.SUCCESS)
            assert await summarizer.summarize_step(step) == "Clicked login"


class TestResultTypes:
    """测试推理结果的 to_dict / from_dict"""

    def test_plan_result_decode(self):
        from task_engine import PlanAction, PlanResult, TaskUsage
        original = PlanResult(
            actions=[PlanAction(type="Input", param={"value": "x"}, locate={"prompt": "box"})],
            thought="type",
            more_actions_needed=True,
            usage=TaskUsage(1, 2, 3),
        )
        decoded = PlanResult.from_dict(json.loads(json.dumps(original.to_dict())))
        assert decoded == original

    def test_assert_result_pass_key(self):
        from task_engine import AssertResult
        assert AssertResult.from_dict({"pass": True}).passed is True
