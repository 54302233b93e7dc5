"""
AI 摘要生成 - 步骤 / 运行的一句话总结

摘要通过推理服务的短文本接口生成；任何失败都回退到
由名称和结果拼出的确定性文本，绝不向上抛出异常。
"""
import json
from typing import Any, Awaitable, Callable, Dict, List

from loguru import logger

from .models import RunContext, StepContext, StepStatus

# messages -> 文本回复
CompleteFn = Callable[[List[Dict[str, str]]], Awaitable[str]]

NO_SUMMARY = "No summary available"

_ACTION_RESULT_MAX_CHARS = 2000

_STEP_SYSTEM_PROMPT = (
    "Generate a concise summary of the test step that includes key information "
    "from the action result. Reply with JSON: {\"summary\": \"...\"}"
)

_RUN_SYSTEM_PROMPT = (
    "Generate a concise summary of the test run. "
    "Reply with JSON: {\"summary\": \"...\"}"
)


def step_fallback_summary(step: StepContext) -> str:
    return f"{step.action} - {step.description} ({step.result.value})"


def run_fallback_summary(run: RunContext) -> str:
    return f"Test run: {run.name} ({run.result.value})"


class AISummarizer:
    """
    步骤 / 运行摘要生成器

    Usage:
        summarizer = AISummarizer(inference.complete_text)
        text = await summarizer.summarize_step(step)
    """

    def __init__(self, complete: CompleteFn):
        self._complete = complete

    async def summarize_step(self, step: StepContext) -> str:
        """为单个步骤生成 1-2 句摘要，失败时返回回退文本"""
        lines = [
            "Summarize the following test step in 1-2 concise sentences:",
            "",
            f"Action: {step.action}",
            f"Description: {step.description}",
            f"Result: {_result_word(step.result)}",
        ]
        if step.error:
            lines.append(f"Error: {step.error}")
        if step.action_result is not None:
            lines.append(f"Action Result: {_format_action_result(step.action_result)}")
        if step.metadata:
            lines.append(f"Metadata: {json.dumps(step.metadata.to_dict(), ensure_ascii=False, default=str)}")
        lines += [
            "",
            "Your summary should be factual, concise, and focus on what was done and the outcome.",
            "Include specific information from the action result when relevant.",
        ]

        try:
            return await self._ask(_STEP_SYSTEM_PROMPT, "\n".join(lines))
        except Exception as e:
            logger.warning(f"⚠️ [Summarizer] 步骤摘要失败，使用回退文本: {e}")
            return step_fallback_summary(step)

    async def summarize_run(self, run: RunContext) -> str:
        """为整个运行生成 2-3 句摘要，失败时返回回退文本"""
        steps_text = "\n".join(
            f"- {s.action}: {s.description} ({s.result.value})"
            + (f" - Error: {s.error}" if s.error else "")
            for s in run.steps
        )
        lines = [
            "Summarize the following test run in 2-3 concise sentences:",
            "",
            f"Test: {run.name}",
        ]
        if run.description:
            lines.append(f"Description: {run.description}")
        lines += [
            f"Result: {_result_word(run.result)}",
            "Steps:",
            steps_text,
            "",
            "Your summary should be factual, concise, and focus on what was done and the overall outcome.",
        ]

        try:
            return await self._ask(_RUN_SYSTEM_PROMPT, "\n".join(lines))
        except Exception as e:
            logger.warning(f"⚠️ [Summarizer] 运行摘要失败，使用回退文本: {e}")
            return run_fallback_summary(run)

    async def _ask(self, system_prompt: str, prompt: str) -> str:
        content = await self._complete([
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ])
        return _extract_summary(content or "")


def _result_word(result: StepStatus) -> str:
    return "Successful" if result == StepStatus.SUCCESS else "Failed"


def _format_action_result(value: Any) -> str:
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    if isinstance(value, (dict, list)):
        text = json.dumps(value, ensure_ascii=False, indent=2, default=str)
    else:
        text = str(value)
    if len(text) > _ACTION_RESULT_MAX_CHARS:
        text = text[:_ACTION_RESULT_MAX_CHARS] + "..."
    return text


def _extract_summary(content: str) -> str:
    """
    解析模型回复

    优先读取 JSON 中的 summary 字段（兼容 markdown 代码块包裹），
    非 JSON 时直接使用纯文本。
    """
    text = content.strip()
    if "{" in text:
        start = text.find("{")
        end = text.rfind("}") + 1
        try:
            parsed = json.loads(text[start:end])
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            summary = parsed.get("summary")
            return str(summary).strip() if summary else NO_SUMMARY
    return text or NO_SUMMARY
