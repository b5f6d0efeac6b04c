from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from wendi_api.config import settings
from wendi_api.database import get_db, init_db
from wendi_api.logging_config import get_logger, setup_logging
from wendi_api.models import Chatbot, Conversation, Message
from wendi_api.routers import automation, chatbots, conversations, webhook

setup_logging(settings.log_level)
logger = get_logger("main")

app = FastAPI(
    title="Wendi API",
    description="WhatsApp Business conversation automation: chatbot flows, automation rules, agent handover",
    version="0.1.0",
    debug=settings.debug,
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(chatbots.router)
app.include_router(automation.router)
app.include_router(conversations.router)


@app.on_event("startup")
async def create_local_tables() -> None:
    # Production schemas are managed outside the app; SQLite is for local runs.
    if settings.database_url.startswith("sqlite"):
        init_db()
        logger.info("SQLite tables created", extra={"context": {"database_url": settings.database_url}})


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "chatbots": db.query(Chatbot).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
    }
