import pytest

from concierge import plans


@pytest.mark.parametrize("raw,expected", [
    ("STARTER", plans.STARTER),
    (" professional ", plans.PROFESSIONAL),
    ("free", plans.STARTER),
    ("Basic", plans.STARTER),
    ("UNLIMITED", plans.PROFESSIONAL),
    ("BYOK Plan", plans.BYOK),
    ("Professional Plan", plans.PROFESSIONAL),
    ("enterprise", plans.DEFAULT_PLAN),
    ("", plans.DEFAULT_PLAN),
    (None, plans.DEFAULT_PLAN),
    (42, plans.DEFAULT_PLAN),
])
def test_plan_codes_are_normalized(raw, expected):
    assert plans.normalize_plan_code(raw) == expected


def test_plan_features():
    assert plans.get_plan("STARTER").max_conversations == 1000
    assert plans.get_plan("BYOK").is_unlimited
    assert plans.get_plan("BYOK").uses_own_model_key
    assert plans.get_plan("PROFESSIONAL").has_custom_webhook
    assert not plans.get_plan("STARTER").has_custom_webhook


def test_upgrade_suggestion():
    assert plans.next_upgrade("STARTER").code == plans.PROFESSIONAL
    assert plans.next_upgrade("PROFESSIONAL") is None
    assert plans.next_upgrade("BYOK") is None
