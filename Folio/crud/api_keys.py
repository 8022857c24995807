from datetime import datetime, timezone

from sqlalchemy.orm import Session

from Folio.models.api_key_model import ApiKey


def get_api_key_row(session: Session, user_id, provider):
    return session.query(ApiKey).filter_by(user_id=user_id, provider=provider).first()


def get_api_key_rows(session: Session, user_id):
    return session.query(ApiKey).filter_by(user_id=user_id).order_by(ApiKey.provider).all()


# Insert or replace the stored (already encrypted) key for (user_id, provider)
def upsert_api_key(session: Session, user_id, provider, encrypted_key):
    row = get_api_key_row(session, user_id, provider)
    if row is None:
        row = ApiKey(user_id=user_id, provider=provider, key=encrypted_key)
        session.add(row)
    else:
        row.key = encrypted_key
        row.updated_at = datetime.now(timezone.utc)
    session.flush()
    return row
