from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from wendi_api.database import get_db
from wendi_api.models import AutomationSettings as AutomationSettingsRow
from wendi_api.models import Conversation, Workspace
from wendi_api.schemas.automation import AutomationSettings, RulePreviewRequest, RulePreviewResponse
from wendi_api.services.automation_service import AutomationRuleEngine, default_automation_settings
from wendi_api.services.conversation_service import to_state
from wendi_api.services.sql_stores import SqlAutomationSettingsStore, SqlMessageLog
from wendi_api.services.state_machine import ConversationState
from wendi_api.services.stores import ConversationActivity

router = APIRouter(prefix="/workspaces/{workspace_id}/automation", tags=["automation"])


def _get_workspace(db: Session, workspace_id: int) -> Workspace:
    workspace = db.get(Workspace, workspace_id)
    if not workspace:
        raise HTTPException(status_code=404, detail=f"Workspace {workspace_id} not found")
    return workspace


@router.get("/settings", response_model=AutomationSettings)
def get_automation_settings(workspace_id: int, db: Session = Depends(get_db)):
    """Stored settings, or the defaults a new workspace starts from (not saved)."""
    _get_workspace(db, workspace_id)
    stored = SqlAutomationSettingsStore(db).get_settings(workspace_id)
    return stored or default_automation_settings()


@router.put("/settings", response_model=AutomationSettings)
def put_automation_settings(workspace_id: int, data: AutomationSettings, db: Session = Depends(get_db)):
    """Replace automation settings. Validation (7 weekdays, HH:MM, rule shape) is done by the schema."""
    _get_workspace(db, workspace_id)

    row = db.get(AutomationSettingsRow, workspace_id)
    if row is None:
        row = AutomationSettingsRow(workspace_id=workspace_id)
        db.add(row)

    dumped = data.model_dump(mode="json", by_alias=True)
    row.holiday_mode = data.holiday_mode
    row.working_hours = dumped["workingHours"]
    row.automation_rules = dumped["automationRules"]
    row.updated_at = datetime.now(timezone.utc)
    db.commit()

    return data


@router.post("/preview", response_model=RulePreviewResponse)
def preview_automation(workspace_id: int, request: RulePreviewRequest, db: Session = Depends(get_db)):
    """Dry run: which rule would answer this message right now, and why. Nothing is sent."""
    _get_workspace(db, workspace_id)
    store = SqlAutomationSettingsStore(db)
    automation_settings = store.get_settings(workspace_id)
    if automation_settings is None:
        return RulePreviewResponse(in_working_hours=False, reason="automation is not configured")

    messages = SqlMessageLog(db)
    activity = None
    if request.conversation_id is not None:
        conversation = db.get(Conversation, request.conversation_id)
        if conversation is None or conversation.workspace_id != workspace_id:
            raise HTTPException(status_code=404, detail=f"Conversation {request.conversation_id} not found")
        state = to_state(conversation)
    else:
        state = ConversationState(id=0, workspace_id=workspace_id, phone=request.phone)
        # A fresh conversation: the previewed message is its only customer message.
        activity = ConversationActivity(customer_messages=1)

    engine = AutomationRuleEngine(messages, settings_store=store)
    decision = engine.evaluate(state, automation_settings, activity=activity)
    return RulePreviewResponse(
        in_working_hours=decision.in_working_hours,
        rule_id=decision.rule.id if decision.rule else None,
        rule_kind=decision.kind.value if decision.kind else None,
        reason=decision.reason,
        response=decision.rule.ai_prompt if decision.rule else None,
    )
