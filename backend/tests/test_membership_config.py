import pytest

from backend.app.memberships.config import load_membership_config


def test_defaults_when_environment_is_empty():
    config = load_membership_config({})

    assert config.default_reminder_days == 30
    assert config.expiring_window_days == 30
    assert config.reminder_tiers == (30, 7)
    assert config.reminder_resend_days == 25
    assert config.store == "postgres"
    assert config.renewal_scheduler_enabled is True
    assert config.renewal_hour == 6


def test_values_are_read_from_environment():
    config = load_membership_config(
        {
            "MEMBERSHIP_DEFAULT_REMINDER_DAYS": "14",
            "MEMBERSHIP_EXPIRING_WINDOW_DAYS": "60",
            "MEMBERSHIP_REMINDER_TIERS": "7, 30,14,7,-1",
            "MEMBERSHIP_REMINDER_RESEND_DAYS": "0",
            "MEMBERSHIP_STORE": " Memory ",
            "MEMBERSHIP_RENEWAL_SCHEDULER": "off",
            "MEMBERSHIP_RENEWAL_HOUR": "23",
        }
    )

    assert config.default_reminder_days == 14
    assert config.expiring_window_days == 60
    assert config.reminder_tiers == (30, 14, 7)
    assert config.reminder_resend_days == 1
    assert config.store == "memory"
    assert config.renewal_scheduler_enabled is False
    assert config.renewal_hour == 23


@pytest.mark.parametrize(
    "env",
    [
        {"MEMBERSHIP_STORE": "redis"},
        {"MEMBERSHIP_RENEWAL_HOUR": "24"},
        {"MEMBERSHIP_DEFAULT_REMINDER_DAYS": "soon"},
    ],
)
def test_invalid_values_raise(env):
    with pytest.raises(ValueError):
        load_membership_config(env)


def test_unrecognised_boolean_falls_back_to_default():
    assert load_membership_config({"MEMBERSHIP_RENEWAL_SCHEDULER": "maybe"}).renewal_scheduler_enabled is True
