import pytest

from mdcars.capabilities import ALL_CAPABILITIES, can, capabilities_for


@pytest.mark.parametrize(
    "role,capability,expected",
    [
        ("owner", "admin", True),
        ("owner", "partners", True),
        ("cashier", "sales", True),
        ("cashier", "customers", True),
        ("cashier", "inventory", False),
        ("cashier", "finance", False),
        ("cashier", "admin", False),
        ("stock_manager", "inventory", True),
        ("stock_manager", "sales", False),
        ("stock_manager", "view", True),
        ("ghost", "view", False),
        (None, "view", False),
        ("owner", "launch_rockets", False),
    ],
)
def test_can(role, capability, expected):
    assert can(role, capability) is expected


def test_owner_has_everything_in_stable_order():
    assert capabilities_for("owner") == list(ALL_CAPABILITIES)


def test_unknown_role_has_nothing():
    assert capabilities_for("intern") == []
