from datetime import timedelta
from unittest.mock import Mock
from zoneinfo import ZoneInfo

import pytest

from factories import MONDAY_EVENING, MONDAY_NOON, WEEKDAYS, make_settings, rule, working_hours
from wendi_api.schemas.automation import AutomationRule
from wendi_api.services.automation_service import (
    AutomationRuleEngine,
    RuleKind,
    classify_rule,
    default_automation_settings,
    is_working_hours,
    resolve_time_zone,
)
from wendi_api.services.memory_stores import InMemoryMessageLog, InMemorySettingsStore
from wendi_api.services.state_machine import ConversationState
from wendi_api.services.stores import ConversationActivity, MessageRecord

UTC = ZoneInfo("UTC")

OUT_OF_HOURS = rule("1", prompt="We are closed")
NO_AGENT = rule("2", prompt="Our team is busy")
WELCOME = rule("3", prompt="Welcome!")
FOLLOW_UP = rule("4", prompt="Still there?", threshold=15)
FALLBACK = rule("5", prompt="We will get back to you")


def _conversation(**kwargs) -> ConversationState:
    return ConversationState(id=1, workspace_id=1, phone="2348000000000", **kwargs)


def _rules_engine(**kwargs) -> AutomationRuleEngine:
    return AutomationRuleEngine(InMemoryMessageLog(), **kwargs)


class TestIsWorkingHours:
    def test_monday_noon_is_open(self):
        assert is_working_hours(make_settings([]), MONDAY_NOON, UTC) is True

    def test_monday_evening_is_closed(self):
        assert is_working_hours(make_settings([]), MONDAY_EVENING, UTC) is False

    def test_end_time_is_exclusive(self):
        settings = make_settings([])
        five_pm = MONDAY_NOON.replace(hour=17)
        assert is_working_hours(settings, five_pm, UTC) is False
        assert is_working_hours(settings, five_pm - timedelta(minutes=1), UTC) is True

    def test_closed_day(self):
        sunday = MONDAY_NOON - timedelta(days=1)
        assert is_working_hours(make_settings([]), sunday, UTC) is False

    def test_holiday_mode_overrides_hours(self):
        assert is_working_hours(make_settings([], holiday_mode=True), MONDAY_NOON, UTC) is False

    def test_time_zone_is_applied(self):
        # 12:00 UTC is 20:00 in Singapore.
        assert is_working_hours(make_settings([]), MONDAY_NOON, ZoneInfo("Asia/Singapore")) is False

    def test_interval_crossing_midnight(self):
        settings = make_settings([], hours=working_hours("22:00", "06:00", open_days=("Monday",)))
        late_monday = MONDAY_NOON.replace(hour=23)
        early_tuesday = MONDAY_NOON + timedelta(hours=15)  # Tuesday 03:00
        assert is_working_hours(settings, late_monday, UTC) is True
        assert is_working_hours(settings, early_tuesday, UTC) is True
        assert is_working_hours(settings, MONDAY_NOON, UTC) is False
        # Monday's early hours belong to Sunday's interval, which is closed.
        assert is_working_hours(settings, MONDAY_NOON.replace(hour=3), UTC) is False

    def test_equal_start_and_end_means_all_day(self):
        settings = make_settings([], hours=working_hours("00:00", "00:00", open_days=WEEKDAYS))
        assert is_working_hours(settings, MONDAY_EVENING, UTC) is True


class TestResolveTimeZone:
    def test_known_zone(self):
        assert resolve_time_zone("Africa/Lagos") == ZoneInfo("Africa/Lagos")

    def test_unknown_zone_falls_back(self):
        assert resolve_time_zone("Mars/Olympus") == ZoneInfo("UTC")

    def test_missing_zone_falls_back(self):
        assert resolve_time_zone(None) == ZoneInfo("UTC")


class TestClassifyRule:
    @pytest.mark.parametrize(
        "rule_id,kind",
        [
            ("1", RuleKind.OUT_OF_HOURS),
            ("2", RuleKind.NO_AGENT),
            ("3", RuleKind.WELCOME),
            ("4", RuleKind.FOLLOW_UP),
            ("5", RuleKind.FALLBACK),
        ],
    )
    def test_well_known_ids(self, rule_id, kind):
        assert classify_rule(AutomationRule.model_validate(rule(rule_id))) == kind

    @pytest.mark.parametrize(
        "description,kind",
        [
            ("Send this fallback message if no criteria is met", RuleKind.FALLBACK),
            ("Greeting for a new chat", RuleKind.WELCOME),
            ("When the team is busy", RuleKind.NO_AGENT),
            ("Reply after hours", RuleKind.OUT_OF_HOURS),
            ("Promo for returning customers", RuleKind.CUSTOM),
        ],
    )
    def test_description_keywords(self, description, kind):
        assert classify_rule(AutomationRule.model_validate(rule("x", description))) == kind

    def test_follow_up_needs_threshold(self):
        without = AutomationRule.model_validate(rule("x", "follow up"))
        with_threshold = AutomationRule.model_validate(rule("x", "follow up", threshold=30))
        assert classify_rule(without) == RuleKind.CUSTOM
        assert classify_rule(with_threshold) == RuleKind.FOLLOW_UP

    def test_legacy_type_key(self):
        parsed = AutomationRule.model_validate({"id": 9, "type": "ai", "aiPrompt": "hi"})
        assert parsed.id == "9"
        assert parsed.response_type == "ai"


class TestEvaluate:
    def test_holiday_mode_wins_during_working_hours(self):
        settings = make_settings([OUT_OF_HOURS, NO_AGENT, WELCOME, FALLBACK], holiday_mode=True)
        decision = _rules_engine().evaluate(_conversation(), settings, activity=ConversationActivity(), now=MONDAY_NOON)

        assert decision.rule.id == "1"
        assert decision.reason == "holiday mode"
        assert decision.in_working_hours is False

    def test_out_of_hours_wins_regardless_of_list_order(self):
        rules = [
            rule("11", "Send when a customer starts a new chat", prompt="Welcome!"),
            rule("12", "Fallback when no criteria match", prompt="We will get back to you"),
            rule("13", "Reply outside working hours", prompt="We are closed"),
        ]
        settings = make_settings(rules, holiday_mode=True)

        decision = _rules_engine().evaluate(_conversation(), settings, activity=ConversationActivity(), now=MONDAY_NOON)

        assert decision.rule.id == "13"
        assert decision.kind == RuleKind.OUT_OF_HOURS

    def test_outside_working_hours(self):
        settings = make_settings([OUT_OF_HOURS, FALLBACK])
        decision = _rules_engine().evaluate(_conversation(), settings, activity=ConversationActivity(), now=MONDAY_EVENING)
        assert decision.kind == RuleKind.OUT_OF_HOURS
        assert decision.reason == "outside working hours"

    def test_no_agent_during_working_hours(self):
        settings = make_settings([OUT_OF_HOURS, NO_AGENT, WELCOME])
        decision = _rules_engine().evaluate(_conversation(), settings, activity=ConversationActivity(), now=MONDAY_NOON)
        assert decision.kind == RuleKind.NO_AGENT

    def test_welcome_when_assigned_and_nothing_sent(self):
        settings = make_settings([NO_AGENT, WELCOME, FALLBACK])
        decision = _rules_engine().evaluate(
            _conversation(assigned=True), settings, activity=ConversationActivity(customer_messages=1), now=MONDAY_NOON
        )
        assert decision.kind == RuleKind.WELCOME

    def test_agent_reply_skips_no_agent_rule(self):
        settings = make_settings([NO_AGENT, FALLBACK])
        activity = ConversationActivity(customer_messages=2, outbound_messages=1, agent_replies=1)
        decision = _rules_engine().evaluate(_conversation(), settings, activity=activity, now=MONDAY_NOON)
        assert decision.kind == RuleKind.FALLBACK

    def test_follow_up_after_threshold(self):
        settings = make_settings([FOLLOW_UP, FALLBACK])
        activity = ConversationActivity(
            customer_messages=2, outbound_messages=1, agent_replies=1, last_outbound_at=MONDAY_NOON - timedelta(minutes=15)
        )
        decision = _rules_engine().evaluate(_conversation(assigned=True), settings, activity=activity, now=MONDAY_NOON)
        assert decision.rule.id == "4"

    def test_follow_up_before_threshold(self):
        settings = make_settings([FOLLOW_UP, FALLBACK])
        activity = ConversationActivity(
            customer_messages=2, outbound_messages=1, agent_replies=1, last_outbound_at=MONDAY_NOON - timedelta(minutes=14)
        )
        decision = _rules_engine().evaluate(_conversation(assigned=True), settings, activity=activity, now=MONDAY_NOON)
        assert decision.rule.id == "5"

    def test_follow_up_without_prior_outbound(self):
        settings = make_settings([FOLLOW_UP])
        decision = _rules_engine().evaluate(
            _conversation(assigned=True), settings, activity=ConversationActivity(customer_messages=1), now=MONDAY_NOON
        )
        assert decision.rule is None
        assert decision.reason == "no applicable rule"

    def test_disabled_and_empty_rules_are_skipped(self):
        settings = make_settings([rule("1", enabled=False), rule("5", prompt="   ")])
        decision = _rules_engine().evaluate(_conversation(), settings, activity=ConversationActivity(), now=MONDAY_EVENING)
        assert decision.rule is None

    def test_custom_rule_is_last_resort(self):
        custom = rule("promo", "Promo for returning customers", prompt="10% off")
        settings = make_settings([custom])
        activity = ConversationActivity(customer_messages=2, outbound_messages=1, agent_replies=1)
        decision = _rules_engine().evaluate(_conversation(), settings, activity=activity, now=MONDAY_NOON)
        assert decision.kind == RuleKind.CUSTOM

    def test_activity_read_from_message_log(self):
        log = InMemoryMessageLog()
        log.save(MessageRecord(conversation_id=1, workspace_id=1, phone="p", role="agent", source="agent"))
        settings = make_settings([NO_AGENT, WELCOME, FALLBACK])

        decision = AutomationRuleEngine(log).evaluate(_conversation(), settings, now=MONDAY_NOON)

        assert decision.kind == RuleKind.FALLBACK

    def test_workspace_time_zone(self):
        store = InMemorySettingsStore(time_zones={1: "Asia/Singapore"})
        settings = make_settings([OUT_OF_HOURS, FALLBACK])
        decision = _rules_engine(settings_store=store).evaluate(
            _conversation(), settings, activity=ConversationActivity(), now=MONDAY_NOON
        )
        assert decision.kind == RuleKind.OUT_OF_HOURS


class TestRespond:
    def test_no_settings_means_no_reply(self):
        assert _rules_engine().respond("p", "hi", _conversation(), None, now=MONDAY_NOON) is None

    def test_text_rule_sends_prompt(self):
        reply = _rules_engine().respond("p", "hi", _conversation(), make_settings([OUT_OF_HOURS]), now=MONDAY_EVENING)
        assert reply.text == "We are closed"
        assert reply.source == "automation"
        assert reply.rule_id == "1"

    def test_ai_rule_uses_generator(self):
        generator = Mock()
        generator.generate.return_value = "  We open at nine.  "
        settings = make_settings([rule("1", prompt="Say we are closed", response_type="ai")])

        reply = _rules_engine(generator=generator).respond("p", "hi", _conversation(), settings, now=MONDAY_EVENING)

        assert reply.text == "We open at nine."
        generator.generate.assert_called_once_with("Say we are closed", "hi")

    def test_ai_failure_degrades_to_prompt(self):
        generator = Mock()
        generator.generate.side_effect = RuntimeError("provider down")
        settings = make_settings([rule("1", prompt="Say we are closed", response_type="ai")])

        reply = _rules_engine(generator=generator).respond("p", "hi", _conversation(), settings, now=MONDAY_EVENING)

        assert reply.text == "Say we are closed"

    def test_empty_ai_output_degrades_to_prompt(self):
        generator = Mock()
        generator.generate.return_value = ""
        settings = make_settings([rule("1", prompt="Say we are closed", response_type="ai")])

        reply = _rules_engine(generator=generator).respond("p", "hi", _conversation(), settings, now=MONDAY_EVENING)

        assert reply.text == "Say we are closed"


class TestDefaultSettings:
    def test_defaults_are_valid(self):
        settings = default_automation_settings()
        assert [r.id for r in settings.automation_rules] == ["1", "2", "3", "4", "5"]
        assert settings.hours_for("Saturday").open is False
        assert settings.automation_rules[3].threshold == 15
