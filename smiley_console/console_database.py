from sqlalchemy import create_engine, Column, Integer, String, Text
from sqlalchemy.types import DateTime
from datetime import datetime
from sqlalchemy.orm import declarative_base, sessionmaker

from smiley_console.config import get_database_url

Base = declarative_base()


class ConsoleSession(Base):
    """Client-side state of a logged-in console user: token, user and selected location."""
    __tablename__ = "console_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    token = Column(Text, nullable=False)
    user_json = Column(Text)
    selected_sede = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


#engine and sessions
_database_url = get_database_url()
_connect_args = {"check_same_thread": False} if _database_url.startswith("sqlite") else {}
engine = create_engine(_database_url, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    Base.metadata.create_all(bind or engine)
