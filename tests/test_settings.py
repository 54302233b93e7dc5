"""
Tests for config module
测试配置解析、覆盖与日志初始化
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings, get_settings, override_settings, reset_settings, setup_logging  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


class TestSettings:
    """测试 Settings 默认值与环境变量"""

    def test_default_values(self):
        """测试默认值"""
        settings = Settings(_env_file=None)
        assert settings.use_context_engine is False
        assert settings.context_engine_max_steps == 10
        assert settings.use_ai_summaries is True
        assert settings.task_cache_enabled is True
        assert settings.task_cache_ttl == 86400
        assert settings.group_name == "Task Report"
        assert settings.max_replan_cycles == 10
        assert settings.wait_for_timeout_ms == 15000
        assert settings.wait_for_check_interval_ms == 3000
        assert settings.captcha_max_attempts == 3

    def test_env_override(self, monkeypatch):
        """测试环境变量覆盖（不区分大小写）"""
        monkeypatch.setenv("USE_CONTEXT_ENGINE", "true")
        monkeypatch.setenv("context_engine_max_steps", "4")
        settings = Settings(_env_file=None)
        assert settings.use_context_engine is True
        assert settings.context_engine_max_steps == 4


class TestGetSettings:
    """测试进程级配置缓存"""

    def test_memoized(self):
        assert get_settings() is get_settings()

    def test_reset(self):
        first = get_settings()
        reset_settings()
        assert get_settings() is not first

    def test_override_restores(self):
        before = get_settings()
        with override_settings(group_name="checkout") as settings:
            assert settings.group_name == "checkout"
            assert get_settings() is settings
        assert get_settings() is before

    def test_override_restores_on_error(self):
        before = get_settings()
        with pytest.raises(RuntimeError):
            with override_settings(use_context_engine=True):
                raise RuntimeError("boom")
        assert get_settings() is before


class TestSetupLogging:
    """测试 loguru 初始化"""

    def test_file_sink(self, tmp_path):
        from loguru import logger

        log_file = tmp_path / "engine.log"
        setup_logging(Settings(_env_file=None, log_level="debug", log_file=str(log_file)))
        logger.debug("🧪 [Test] 写入日志文件")
        logger.remove()

        assert "写入日志文件" in log_file.read_text(encoding="utf-8")
