# Import all SQLAlchemy models so Alembic autogenerate can discover tables via Base.metadata.
# Alembic's env.py imports this package for side effects.

from .api_key_model import ApiKey  # noqa: F401
from .conversation_models import Block, Conversation  # noqa: F401
