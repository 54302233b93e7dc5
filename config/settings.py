"""
Configuration settings for the task engine

配置只在进程启动时解析一次，由 get_settings() 缓存，
再通过构造函数显式传入 ContextEngine / PageAgent / TaskCache 等组件。
测试使用 override_settings() 临时替换。
"""
from contextlib import contextmanager
from typing import Iterator, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Inference Configuration (OpenAI 兼容 /v1/chat/completions)
    vllm_api_url: Optional[str] = None
    vllm_api_token: Optional[str] = None
    vllm_model: str = "default"
    inference_timeout: int = 60  # 单次推理请求超时（秒）
    inference_max_tokens: int = 2048

    # Context Engine Configuration
    use_context_engine: bool = False
    context_engine_max_steps: int = 10
    use_ai_summaries: bool = True

    # Task Cache Configuration
    task_cache_enabled: bool = True
    redis_url: Optional[str] = None
    task_cache_ttl: int = 86400  # 缓存过期时间（秒），默认24小时
    task_cache_key_prefix: str = "task_cache"

    # Agent Configuration
    group_name: str = "Task Report"
    group_description: str = ""
    max_replan_cycles: int = 10
    wait_for_timeout_ms: int = 15 * 1000
    wait_for_check_interval_ms: int = 3 * 1000
    captcha_max_attempts: int = 3
    captcha_timeout_ms: int = 60 * 1000
    captcha_retry_delay_ms: int = 2000

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None  # 例如 "logs/{time}.log"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """返回进程级配置（首次调用时解析环境变量与 .env）"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """丢弃已解析的配置，下次 get_settings() 重新读取环境"""
    global _settings
    _settings = None


@contextmanager
def override_settings(**values) -> Iterator[Settings]:
    """
    测试专用：临时覆盖配置项

    Usage:
        with override_settings(use_context_engine=True) as s:
            agent = PageAgent(page, inference, settings=s)
    """
    global _settings
    previous = _settings
    _settings = get_settings().model_copy(update=values)
    try:
        yield _settings
    finally:
        _settings = previous
