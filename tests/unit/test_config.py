from decimal import Decimal

from pydantic import ValidationError
import pytest

from marketplace.core.config import Settings, is_running_tests, settings


class TestSettings:
    def test_test_environment_is_loaded(self):
        assert settings.platform_fee_percentage == Decimal("15")
        assert settings.minimum_platform_fee == Decimal("100")
        assert settings.platform_timezone == "Africa/Lagos"

    def test_fee_config_from_settings(self):
        config = Settings(PLATFORM_FEE_PERCENTAGE="20", MINIMUM_PLATFORM_FEE="50").fee_config()

        assert config.fee_rate == Decimal("0.2")
        assert config.minimum_fee == Decimal("50")
        assert config.percentage == Decimal("20")

    @pytest.mark.parametrize("value", ["-1", "100", "150"])
    def test_fee_percentage_out_of_range_is_rejected(self, value):
        with pytest.raises(ValidationError):
            Settings(PLATFORM_FEE_PERCENTAGE=value)

    def test_negative_minimum_fee_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(MINIMUM_PLATFORM_FEE="-5")

    def test_currency_is_normalized(self):
        assert Settings(platform_currency=" ngn ").platform_currency == "NGN"

    def test_clearance_delay_cannot_be_negative(self):
        with pytest.raises(ValidationError):
            Settings(earnings_clearance_delay_hours=-1)

    def test_running_under_pytest(self):
        assert is_running_tests() is True
