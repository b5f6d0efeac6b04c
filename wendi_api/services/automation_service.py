from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from wendi_api.config import settings as app_settings
from wendi_api.logging_config import get_logger
from wendi_api.schemas.automation import WEEKDAYS, AutomationRule, AutomationSettings, WorkingHours
from wendi_api.services.state_machine import ConversationState
from wendi_api.services.stores import (
    AutomationSettingsStore,
    ConversationActivity,
    MessageLog,
    OutboundMessage,
    TextGenerator,
)

logger = get_logger("automation_service")


class RuleKind(str, Enum):
    OUT_OF_HOURS = "out_of_hours"
    NO_AGENT = "no_agent"
    WELCOME = "welcome"
    FOLLOW_UP = "follow_up"
    FALLBACK = "fallback"
    CUSTOM = "custom"


# Rule ids shipped with every workspace's default settings.
WELL_KNOWN_RULE_IDS = {
    "1": RuleKind.OUT_OF_HOURS,
    "2": RuleKind.NO_AGENT,
    "3": RuleKind.WELCOME,
    "4": RuleKind.FOLLOW_UP,
    "5": RuleKind.FALLBACK,
}

_DESCRIPTION_KEYWORDS = (
    (RuleKind.FALLBACK, ("fallback", "no criteria")),
    (RuleKind.WELCOME, ("welcome", "new chat", "greeting")),
    (RuleKind.NO_AGENT, ("no agent", "no customer service", "busy", "unavailable")),
    (RuleKind.OUT_OF_HOURS, ("not working hours", "out of hours", "outside", "after hours", "out of office", "holiday")),
    (RuleKind.FOLLOW_UP, ("wait more than", "follow up", "follow-up", "threshold")),
)


@dataclass(frozen=True)
class RuleDecision:
    in_working_hours: bool
    reason: str
    rule: Optional[AutomationRule] = None
    kind: Optional[RuleKind] = None


def classify_rule(rule: AutomationRule) -> RuleKind:
    if rule.id in WELL_KNOWN_RULE_IDS:
        return WELL_KNOWN_RULE_IDS[rule.id]
    description = rule.description.lower()
    for kind, keywords in _DESCRIPTION_KEYWORDS:
        if any(keyword in description for keyword in keywords):
            if kind == RuleKind.FOLLOW_UP and rule.threshold is None:
                continue
            return kind
    if rule.threshold is not None:
        return RuleKind.FOLLOW_UP
    return RuleKind.CUSTOM


def is_applicable(rule: AutomationRule) -> bool:
    return rule.enabled and bool(rule.ai_prompt.strip())


def resolve_time_zone(name: Optional[str]) -> ZoneInfo:
    for candidate in (name, app_settings.default_time_zone, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown time zone, falling back", extra={"context": {"time_zone": candidate}})
    return ZoneInfo("UTC")


def _within(entry: Optional[WorkingHours], current: str, *, carried_over: bool) -> bool:
    """Check ``current`` (HH:MM) against one day's [start, end) interval.

    ``carried_over`` asks about the after-midnight tail of the previous day's
    interval, which only exists when end < start.
    """
    if entry is None or not entry.open:
        return False
    start, end = entry.start_time, entry.end_time
    if start == end:
        return not carried_over
    if start < end:
        return not carried_over and start <= current < end
    if carried_over:
        return current < end
    return current >= start


def is_working_hours(settings: AutomationSettings, now: datetime, tz: ZoneInfo) -> bool:
    if settings.holiday_mode:
        return False
    local = now.astimezone(tz)
    current = local.strftime("%H:%M")
    today = WEEKDAYS[local.weekday()]
    yesterday = WEEKDAYS[(local.weekday() - 1) % 7]
    return _within(settings.hours_for(today), current, carried_over=False) or _within(
        settings.hours_for(yesterday), current, carried_over=True
    )


def _threshold_met(rule: AutomationRule, activity: ConversationActivity, now: datetime) -> bool:
    if rule.threshold is None:
        return True
    if activity.last_outbound_at is None:
        return False
    return now - activity.last_outbound_at >= timedelta(minutes=rule.threshold)


def default_automation_settings() -> AutomationSettings:
    """Settings offered to a workspace that has never saved any."""
    hours = [
        {"day": day, "open": day not in ("Saturday", "Sunday"), "startTime": "09:00", "endTime": "17:00"}
        for day in WEEKDAYS
    ]
    rules = [
        {
            "id": "1",
            "enabled": True,
            "description": "When it is not working hours, reply with this message",
            "responseType": "text",
            "aiPrompt": "Thank you for your message. We are currently outside our working hours. "
            "We'll get back to you as soon as possible.",
        },
        {
            "id": "2",
            "enabled": True,
            "description": "When there is no customer service online during working hours, reply with this message",
            "responseType": "text",
            "aiPrompt": "Thank you for your message. Our team is currently busy. We'll respond to you shortly.",
        },
        {
            "id": "3",
            "enabled": True,
            "description": "Send this welcome message when a new chat is started",
            "responseType": "text",
            "aiPrompt": "Hello! Welcome to our WhatsApp support. How can we help you today?",
        },
        {
            "id": "4",
            "enabled": False,
            "description": "During working hours, users wait more than",
            "responseType": "ai",
            "threshold": 15,
            "aiPrompt": "Hi! We noticed you haven't responded in a while. Is there anything else we can help you with?",
        },
        {
            "id": "5",
            "enabled": True,
            "description": "Send this fallback message if no criteria is met",
            "responseType": "text",
            "aiPrompt": "Thank you for your message. We're here to help and will get back to you soon.",
        },
    ]
    return AutomationSettings.model_validate({"holidayMode": False, "workingHours": hours, "automationRules": rules})


class AutomationRuleEngine:
    """Picks at most one automated reply for an inbound message."""

    def __init__(
        self,
        messages: MessageLog,
        *,
        generator: Optional[TextGenerator] = None,
        settings_store: Optional[AutomationSettingsStore] = None,
    ):
        self.messages = messages
        self.generator = generator
        self.settings_store = settings_store

    def _time_zone(self, workspace_id: int) -> ZoneInfo:
        name = self.settings_store.get_time_zone(workspace_id) if self.settings_store else None
        return resolve_time_zone(name)

    def evaluate(
        self,
        conversation: ConversationState,
        settings: AutomationSettings,
        *,
        activity: Optional[ConversationActivity] = None,
        now: Optional[datetime] = None,
    ) -> RuleDecision:
        """Walk the rule cascade and report which rule fires and why."""
        now = now or datetime.now(timezone.utc)
        if activity is None:
            activity = self.messages.activity(conversation.id)
        working = is_working_hours(settings, now, self._time_zone(conversation.workspace_id))

        by_kind: dict[RuleKind, list[AutomationRule]] = {kind: [] for kind in RuleKind}
        for rule in settings.automation_rules:
            if is_applicable(rule):
                by_kind[classify_rule(rule)].append(rule)

        def pick(kind: RuleKind, reason: str, check_threshold: bool = False) -> Optional[RuleDecision]:
            for rule in by_kind[kind]:
                if check_threshold and not _threshold_met(rule, activity, now):
                    continue
                return RuleDecision(in_working_hours=working, reason=reason, rule=rule, kind=kind)
            return None

        if not working:
            reason = "holiday mode" if settings.holiday_mode else "outside working hours"
            decision = pick(RuleKind.OUT_OF_HOURS, reason)
            if decision:
                return decision

        if working and not conversation.assigned and activity.agent_replies == 0:
            decision = pick(RuleKind.NO_AGENT, "no agent has picked up the conversation")
            if decision:
                return decision

        if activity.outbound_messages == 0:
            decision = pick(RuleKind.WELCOME, "first message of a new conversation")
            if decision:
                return decision

        decision = pick(RuleKind.FOLLOW_UP, "customer waited past the threshold", check_threshold=True)
        if decision:
            return decision

        decision = pick(RuleKind.FALLBACK, "no other rule matched")
        if decision:
            return decision

        decision = pick(RuleKind.CUSTOM, "custom rule", check_threshold=True)
        if decision:
            return decision

        return RuleDecision(in_working_hours=working, reason="no applicable rule")

    def respond(
        self,
        phone: str,
        text: str,
        conversation: ConversationState,
        settings: Optional[AutomationSettings],
        *,
        now: Optional[datetime] = None,
    ) -> Optional[OutboundMessage]:
        if settings is None:
            return None

        decision = self.evaluate(conversation, settings, now=now)
        if decision.rule is None:
            logger.info(
                "No automation rule applies",
                extra={"context": {"conversation_id": conversation.id, "reason": decision.reason}},
            )
            return None

        rule = decision.rule
        logger.info(
            "Automation rule fired",
            extra={
                "context": {
                    "conversation_id": conversation.id,
                    "phone": phone,
                    "rule_id": rule.id,
                    "kind": decision.kind.value,
                    "reason": decision.reason,
                }
            },
        )
        reply = self._render(rule, text)
        return OutboundMessage(text=reply, source="automation", rule_id=rule.id)

    def _render(self, rule: AutomationRule, text: str) -> str:
        if rule.response_type != "ai" or self.generator is None:
            return rule.ai_prompt
        try:
            generated = self.generator.generate(rule.ai_prompt, text)
        except Exception as e:
            logger.warning(
                "AI generation failed, sending the rule prompt",
                extra={"context": {"rule_id": rule.id, "error": str(e)}},
            )
            return rule.ai_prompt
        if not generated or not generated.strip():
            return rule.ai_prompt
        return generated.strip()
