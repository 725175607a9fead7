# Alert Feed - SQLAlchemy Declarative Base
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Shared base for all models."""

    pass
