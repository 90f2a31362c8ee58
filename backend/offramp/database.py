"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from offramp.config import get_settings

settings = get_settings()

if settings.DATABASE_URL.startswith("sqlite:///"):
    # Ensure data directory exists
    os.makedirs(os.path.dirname(settings.DATABASE_URL.replace("sqlite:///", "")) or ".", exist_ok=True)

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,  # Required for SQLite
    echo=settings.DEBUG,
)

# Objects outlive the request session when handed to background webhook delivery.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from offramp.models import partner as _partner_model          # noqa: F401
    from offramp.models import session as _session_model          # noqa: F401
    from offramp.models import quote as _quote_model              # noqa: F401
    from offramp.models import kyc as _kyc_model                  # noqa: F401
    from offramp.models import transaction as _transaction_model  # noqa: F401
    from offramp.models import webhook as _webhook_model          # noqa: F401
    from offramp.models import audit as _audit_model              # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
