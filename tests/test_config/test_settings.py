"""Tests for startup configuration validation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from config.settings import SLACK_TOKEN_PLACEHOLDER, load_settings
from src.errors import ConfigurationError
from tests.factories import PRIVATE_KEY, TARGET_WALLET


def _load(**overrides):
    values = {
        "_env_file": None,
        "target_wallet_address": TARGET_WALLET,
        "base_private_key": PRIVATE_KEY,
        "slack_enabled": False,
    }
    values.update(overrides)
    return load_settings(**values)


class TestValidSettings:
    """Defaults plus required identities form a valid configuration."""

    def test_defaults_load(self):
        s = _load()
        assert s.swap_venue == "kyberswap"
        assert s.requires_bridge is True
        assert s.min_balance == Decimal("400000")
        assert s.max_slippage == Decimal("20")

    def test_settings_are_immutable(self):
        s = _load()
        with pytest.raises(Exception):
            s.min_balance = Decimal("1")  # type: ignore[misc]

    def test_permaswap_needs_no_base_key(self):
        s = _load(swap_venue="permaswap", base_private_key="")
        assert s.requires_bridge is False

    def test_six_field_cron_accepted(self):
        assert _load(cron_schedule="0 0 */6 * * *").cron_schedule == "0 0 */6 * * *"


class TestValidationRules:
    """Each rule surfaces as a ConfigurationError line."""

    def test_missing_target_wallet(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(target_wallet_address="")
        assert "TARGET_WALLET_ADDRESS is required" in exc.value.errors

    def test_short_process_id(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(target_token_process_id="abc")
        assert any("TARGET_TOKEN_PROCESS_ID" in e for e in exc.value.errors)

    def test_bad_evm_address(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(base_usdc_contract="0x1234")
        assert any("BASE_USDC_CONTRACT" in e for e in exc.value.errors)

    def test_decimals_out_of_range(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(target_token_decimals=19)
        assert any("TARGET_TOKEN_DECIMALS" in e for e in exc.value.errors)

    def test_target_below_minimum(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(min_balance=Decimal("500"), target_balance=Decimal("400"))
        assert any("greater than or equal to MIN_BALANCE" in e for e in exc.value.errors)

    @pytest.mark.parametrize("value", ["0", "100.1", "-5"])
    def test_slippage_bounds(self, value):
        with pytest.raises(ConfigurationError) as exc:
            _load(max_slippage=Decimal(value))
        assert any("MAX_SLIPPAGE" in e for e in exc.value.errors)

    def test_slippage_upper_bound_inclusive(self):
        assert _load(max_slippage=Decimal("100")).max_slippage == Decimal("100")

    @pytest.mark.parametrize("expr", ["* * * *", "0 0 * * * * *"])
    def test_cron_field_count(self, expr):
        with pytest.raises(ConfigurationError) as exc:
            _load(cron_schedule=expr)
        assert any("5 or 6 fields" in e for e in exc.value.errors)

    def test_cron_garbage_rejected(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(cron_schedule="a b c d e")
        assert any("CRON_SCHEDULE" in e for e in exc.value.errors)

    def test_kyberswap_requires_base_key(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(base_private_key="")
        assert any("BASE_PRIVATE_KEY" in e for e in exc.value.errors)

    def test_slack_placeholder_token_rejected(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(slack_enabled=True, slack_token=SLACK_TOKEN_PLACEHOLDER)
        assert any("SLACK_TOKEN" in e for e in exc.value.errors)

    def test_slack_requires_channel(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(slack_enabled=True, slack_token="xoxb-real", slack_channel="")
        assert any("SLACK_CHANNEL" in e for e in exc.value.errors)

    def test_all_errors_collected_together(self):
        with pytest.raises(ConfigurationError) as exc:
            _load(target_wallet_address="", max_slippage=Decimal("0"), cron_schedule="*")
        assert len(exc.value.errors) >= 3


class TestNotificationsToggle:
    """Absent credentials disable Slack silently."""

    def test_no_token_means_disabled(self):
        assert _load(slack_enabled=None, slack_token="").notifications_enabled is False

    def test_placeholder_means_disabled(self):
        assert _load(slack_enabled=None, slack_token=SLACK_TOKEN_PLACEHOLDER).notifications_enabled is False

    def test_real_token_auto_enables(self):
        assert _load(slack_enabled=None, slack_token="xoxb-real").notifications_enabled is True
