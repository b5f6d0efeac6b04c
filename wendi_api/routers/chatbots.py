from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from wendi_api.database import get_db
from wendi_api.schemas.chatbot import ChatbotFlagsRequest, ChatbotResponse, ChatbotSaveRequest
from wendi_api.services.chatbot_service import list_chatbots, save_chatbot, set_flags, to_response
from wendi_api.services.result import Result

router = APIRouter(prefix="/workspaces/{workspace_id}/chatbots", tags=["chatbots"])

_ERROR_STATUS = {
    "workspace_not_found": 404,
    "not_found": 404,
    "invalid_graph": 422,
}


def _unwrap(result: Result, db: Session):
    if not result.ok:
        db.rollback()
        raise HTTPException(status_code=_ERROR_STATUS.get(result.error_code, 400), detail=result.error)
    db.commit()
    db.refresh(result.value)
    return to_response(result.value)


@router.get("", response_model=list[ChatbotResponse])
def get_chatbots(workspace_id: int, db: Session = Depends(get_db)):
    return [to_response(chatbot) for chatbot in list_chatbots(db, workspace_id)]


@router.post("", response_model=ChatbotResponse, status_code=201)
def create_chatbot(workspace_id: int, request: ChatbotSaveRequest, db: Session = Depends(get_db)):
    """Create a chatbot. The graph is validated before anything is stored."""
    return _unwrap(save_chatbot(db, workspace_id, request), db)


@router.put("/{chatbot_id}", response_model=ChatbotResponse)
def update_chatbot(workspace_id: int, chatbot_id: int, request: ChatbotSaveRequest, db: Session = Depends(get_db)):
    return _unwrap(save_chatbot(db, workspace_id, request, chatbot_id=chatbot_id), db)


@router.patch("/{chatbot_id}", response_model=ChatbotResponse)
def update_chatbot_flags(
    workspace_id: int, chatbot_id: int, request: ChatbotFlagsRequest, db: Session = Depends(get_db)
):
    """Publish/unpublish or make default. Making one chatbot default clears the others."""
    return _unwrap(set_flags(db, workspace_id, chatbot_id, request), db)
