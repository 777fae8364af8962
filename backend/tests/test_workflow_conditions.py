import datetime as dt
from types import SimpleNamespace

import pytest

from ledgerly.services.workflows import registry
from ledgerly.services.workflows.conditions import ConditionEvaluator
from ledgerly.services.workflows.scheduler import CronError, CronExpression, local_time, should_run

CONTEXT = {
    "trigger_data": {"amount": 1500, "vendor": "Acme Supplies", "tags": ["ops"], "note": "  "},
    "last_condition_result": True,
}


@pytest.mark.parametrize(
    "field, operator, value, expected",
    [
        ("trigger_data.amount", "equals", 1500, True),
        ("trigger_data.amount", "not_equals", 1500, False),
        ("trigger_data.amount", "greater_than", "1000", True),
        ("trigger_data.amount", "less_than", 1000, False),
        ("trigger_data.amount", "greater_than_or_equals", 1500, True),
        ("trigger_data.amount", "less_than_or_equals", 1499.99, False),
        ("trigger_data.vendor", "contains", "Supplies", True),
        ("trigger_data.vendor", "not_contains", "Acme", False),
        ("trigger_data.vendor", "starts_with", "Acme", True),
        ("trigger_data.vendor", "ends_with", "Ltd", False),
        ("trigger_data.note", "is_empty", None, True),
        ("trigger_data.missing", "is_empty", None, True),
        ("trigger_data.tags", "is_not_empty", None, True),
        ("trigger_data.vendor", "in", ["Acme Supplies", "Globex"], True),
        ("trigger_data.vendor", "not_in", "Acme Supplies", False),
        ("trigger_data.vendor", "matches", r"^acme|^Acme\s", True),
    ],
)
def test_operators(field, operator, value, expected):
    condition = {"field": field, "operator": operator, "value": value}
    assert ConditionEvaluator(condition, CONTEXT).evaluate() is expected


def test_unknown_operator_and_failed_comparison_are_false():
    assert ConditionEvaluator({"field": "trigger_data.amount", "operator": "between"}, CONTEXT).evaluate() is False
    bad_number = {"field": "trigger_data.vendor", "operator": "greater_than", "value": 10}
    assert ConditionEvaluator(bad_number, CONTEXT).evaluate() is False
    bad_regex = {"field": "trigger_data.vendor", "operator": "matches", "value": "("}
    assert ConditionEvaluator(bad_regex, CONTEXT).evaluate() is False


def test_nested_groups():
    conditions = {
        "combinator": "or",
        "rules": [
            {"field": "trigger_data.amount", "operator": "less_than", "value": 100},
            {
                "combinator": "and",
                "rules": [
                    {"field": "trigger_data.vendor", "operator": "contains", "value": "Acme"},
                    {"field": "last_condition_result", "operator": "equals", "value": True},
                ],
            },
        ],
    }
    assert ConditionEvaluator(conditions, CONTEXT).evaluate() is True
    conditions["combinator"] = "and"
    assert ConditionEvaluator(conditions, CONTEXT).evaluate() is False


def test_empty_conditions_pass():
    assert ConditionEvaluator(None, CONTEXT).evaluate() is True
    assert ConditionEvaluator({"rules": []}, CONTEXT).evaluate() is True
    assert ConditionEvaluator({"operator": "equals"}, CONTEXT).evaluate() is True


def test_registry_metadata():
    assert registry.default_step_name("send_notification") == "Send Notification"
    assert registry.step_class("notify") is registry.step_class("send_notification")
    assert not registry.is_valid_step_type("http_request")
    grouped = registry.steps_by_category()
    assert {s["type"] for s in grouped["finance"]} == {"categorize_transactions", "match_invoices"}
    assert {s["type"] for s in grouped["logic"]} == {"condition"}


def test_cron_steps_and_ranges():
    cron = CronExpression("*/15 9-17 * * 1-5")
    monday = dt.datetime(2026, 9, 7, 9, 30)
    assert cron.matches(monday)
    assert not cron.matches(monday.replace(minute=31))
    assert not cron.matches(monday.replace(hour=18, minute=0))
    assert not cron.matches(dt.datetime(2026, 9, 6, 9, 30))  # Sunday


def test_cron_sunday_is_zero_or_seven():
    sunday = dt.datetime(2026, 9, 6, 8, 0)
    assert CronExpression("0 8 * * 0").matches(sunday)
    assert CronExpression("0 8 * * 7").matches(sunday)
    assert not CronExpression("0 8 * * 6").matches(sunday)


def test_cron_restricted_day_fields_are_or_ed():
    cron = CronExpression("0 0 1 * 1")
    assert cron.matches(dt.datetime(2026, 10, 1))  # Thursday the 1st
    assert cron.matches(dt.datetime(2026, 9, 7))  # Monday the 7th
    assert not cron.matches(dt.datetime(2026, 9, 8))
    assert CronExpression("0 0 1 * *").matches(dt.datetime(2026, 10, 1))
    assert not CronExpression("0 0 1 * *").matches(dt.datetime(2026, 9, 7))


def test_cron_accepts_month_and_day_names():
    weekdays = CronExpression("0 9 * * MON-FRI")
    assert weekdays.matches(dt.datetime(2026, 10, 19, 9, 0))  # Monday
    assert not weekdays.matches(dt.datetime(2026, 10, 18, 9, 0))  # Sunday
    assert CronExpression("0 0 1 JAN *").matches(dt.datetime(2027, 1, 1))
    assert not CronExpression("0 0 1 JAN *").matches(dt.datetime(2026, 12, 1))
    assert should_run(_scheduled("0 9 * * mon-fri"), dt.datetime(2026, 10, 19, 9, 0))


@pytest.mark.parametrize(
    "expression", ["* * * *", "0 9 * * * *", "61 * * * *", "0 25 * * *", "a * * * *", "0 9 * * FUNDAY", ""]
)
def test_invalid_cron(expression):
    with pytest.raises(CronError):
        CronExpression(expression)


def _scheduled(cron, timezone=None, last=None):
    return SimpleNamespace(
        id=1,
        trigger_config={"cron": cron, "timezone": timezone},
        last_executed_at=last,
    )


def test_should_run_uses_workflow_timezone():
    now = dt.datetime(2026, 9, 7, 4, 0)
    assert local_time(now, "Asia/Kolkata").hour == 9
    assert should_run(_scheduled("30 9 * * *", "Asia/Kolkata"), now)
    assert not should_run(_scheduled("30 9 * * *"), now)
    assert should_run(_scheduled("0 4 * * *", "Mars/Olympus"), now)


def test_should_run_guards():
    now = dt.datetime(2026, 9, 7, 9, 0)
    assert not should_run(_scheduled("0 9 * * *", last=now - dt.timedelta(minutes=1)), now)
    assert should_run(_scheduled("0 9 * * *", last=now - dt.timedelta(hours=1)), now)
    assert not should_run(_scheduled(None), now)
    assert not should_run(_scheduled("every day"), now)
