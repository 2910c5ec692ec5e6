"""配置测试"""

import json
from pathlib import Path

import pytest

from calendar_sheet_sync.config import Config
from calendar_sheet_sync.config.config import (
    AppConfig,
    CalendarConfig,
    DEFAULT_CUSTOM_FIELDS,
    SyncConfig,
)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "conf" / "config.json"


class TestConfigFile:
    """配置文件测试"""

    def test_default_config_created(self, config_path: Path):
        """测试配置文件不存在时生成默认配置"""
        config = Config(str(config_path))

        assert config_path.exists()
        assert config.calendar.time_zone == "America/Los_Angeles"
        assert config.sync.conflict_resolution == "LAST_WRITE_WINS"
        assert config.sync.custom_fields == DEFAULT_CUSTOM_FIELDS
        assert config.store.backend == "redis"
        assert config.validate() == []

    def test_load_existing(self, config_path: Path):
        """测试读取已有配置"""
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({
            "calendar": {"calendar_id": "team", "time_zone": "Asia/Shanghai"},
            "sync": {
                "batch_size": 20,
                "extension_policy": "clamp",
                "custom_fields": {
                    "effort": {"column": "P", "name": "Effort", "type": "number", "min": 0, "max": 8, "default": 1}
                },
            },
        }), encoding="utf-8")

        config = Config(str(config_path))

        assert config.calendar.calendar_id == "team"
        assert config.sync.batch_size == 20
        assert config.sync.max_retries == 3
        assert config.sync.extension_policy == "clamp"
        effort = config.sync.custom_fields[0]
        assert (effort.key, effort.name, effort.min_value, effort.max_value) == ("effort", "Effort", 0, 8)

    def test_get_dotted_path(self, config_path: Path):
        """测试按点分路径读取"""
        config = Config(str(config_path))

        assert config.get("sync.batch_size") == 100
        assert config.get("sync.custom_fields.priority.max") == 5
        assert config.get("sync.unknown", "fallback") == "fallback"
        assert config.get("calendar.calendar_id.deeper") is None

    def test_save_round_trip(self, config_path: Path):
        """测试保存后重新加载"""
        config = Config(str(config_path))
        config.save()

        reloaded = Config(str(config_path))

        assert reloaded.app == config.app


class TestValidation:
    """配置校验测试"""

    def test_defaults_valid(self):
        """测试默认配置有效"""
        assert AppConfig().validate() == []

    def test_invalid_values_reported(self):
        """测试无效配置"""
        config = AppConfig(
            calendar=CalendarConfig(time_zone="Mars/Olympus", look_ahead_days=0),
            sync=SyncConfig(batch_size=0, conflict_resolution="NEWEST", extension_policy="wrap"),
        )

        errors = config.validate()

        assert "calendar.time_zone 'Mars/Olympus' is not a known time zone" in errors
        assert "calendar.look_ahead_days must be greater than 0" in errors
        assert "sync.batch_size must be greater than 0" in errors
        assert "sync.extension_policy must be 'reject' or 'clamp'" in errors
        assert any(error.startswith("sync.conflict_resolution") for error in errors)

    def test_config_is_immutable(self):
        """测试配置不可修改"""
        with pytest.raises(AttributeError):
            AppConfig().sync.batch_size = 5
