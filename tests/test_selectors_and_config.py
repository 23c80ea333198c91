"""
Tests cover:
- image selector parsing (latest / current / id / version)
- settings helpers: image name fallback, log level normalization
- per-user .env writing keeps existing keys
"""

import pytest

from core.config import AppSettings, read_env_file, write_user_env_vars
from core.domain.selectors import ImageSelector, SelectorKind
from core.errors import ValidationError


@pytest.mark.parametrize("raw", [None, "", "  ", "latest"])
def test_empty_or_latest_selects_latest(raw):
    assert ImageSelector.parse(raw).kind is SelectorKind.LATEST


def test_current_selector():
    selector = ImageSelector.parse("current")
    assert selector.kind is SelectorKind.CURRENT
    assert selector.value is None


def test_uuid_selector_is_an_id_and_lowercased():
    selector = ImageSelector.parse("2E6C1A3B-0F9D-4C55-9A6B-6D1F0E2A7B10")
    assert selector.kind is SelectorKind.ID
    assert selector.value == "2e6c1a3b-0f9d-4c55-9a6b-6d1f0e2a7b10"


def test_anything_else_is_a_version():
    selector = ImageSelector.parse("4.12.1")
    assert selector.kind is SelectorKind.VERSION
    assert str(selector) == "4.12.1"


def test_selector_with_whitespace_is_rejected():
    with pytest.raises(ValidationError):
        ImageSelector.parse("4.12 beta")


def test_image_name_falls_back_to_service_name():
    settings = AppSettings(_env_file=None, image_names={"logger": "fleet-logger"})
    assert settings.image_name_for("logger") == "fleet-logger"
    assert settings.image_name_for("metrics") == "metrics"


def test_log_level_is_uppercased():
    assert AppSettings(_env_file=None, log_level="debug").log_level == "DEBUG"


def test_write_user_env_vars_merges_existing(tmp_path):
    env_path = tmp_path / "cfg" / ".env"
    env_path.parent.mkdir()
    env_path.write_text("# old\nFLEET_ROLLOUT_SCOPE_NAME='edge'\nFLEET_ROLLOUT_CONCURRENCY=3\n", encoding="utf-8")

    written = write_user_env_vars({"FLEET_ROLLOUT_CONCURRENCY": "8", "FLEET_ROLLOUT_UPDATES_URL": "http://u.test"}, env_path)

    assert written == env_path
    data = read_env_file(env_path)
    assert data == {
        "FLEET_ROLLOUT_SCOPE_NAME": "edge",
        "FLEET_ROLLOUT_CONCURRENCY": "8",
        "FLEET_ROLLOUT_UPDATES_URL": "http://u.test",
    }
