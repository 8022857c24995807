from datetime import datetime, timezone

from sqlalchemy.orm import Session

from Folio.models.conversation_models import Conversation

DEFAULT_TITLE = "New Conversation"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Create a new conversation owned by user_id
def create_conversation(session: Session, user_id, model, title=None):
    now = _now()
    conv = Conversation(
        user_id=user_id,
        model=model,
        title=title or DEFAULT_TITLE,
        status="idle",
        created_at=now,
        updated_at=now,
    )
    session.add(conv)
    session.flush()
    return conv


def get_conversation(session: Session, conversation_id):
    return session.get(Conversation, conversation_id)


# Conversations for a user, most recently active first
def get_conversations_for_user(session: Session, user_id):
    return (
        session.query(Conversation)
        .filter_by(user_id=user_id)
        .order_by(Conversation.updated_at.desc(), Conversation.created_at.desc())
        .all()
    )


def update_conversation(session: Session, conv: Conversation, **fields):
    for name, value in fields.items():
        setattr(conv, name, value)
    conv.updated_at = _now()
    session.flush()
    return conv


def delete_conversation(session: Session, conv: Conversation) -> None:
    session.delete(conv)
    session.flush()
