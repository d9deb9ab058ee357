from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base — all crawl, reading and subscription tables inherit from this."""
    pass
