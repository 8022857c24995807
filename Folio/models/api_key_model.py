from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func

from Folio.database import Base


# Stores one encrypted provider API key per (user_id, provider)
class ApiKey(Base):
    __tablename__ = "api_keys"

    __table_args__ = (
        Index("ux_api_keys_user_id_provider", "user_id", "provider", unique=True),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), index=True, nullable=False)
    provider = Column(String(32), nullable=False)
    key = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
