"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, ForeignKey, Integer, String, Text

from chat_api.storage import Base


class User(Base):
    """
    Registered account.

    Table: users
    username and email are each unique; only the salted hash of the
    password is stored.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(String, nullable=False)  # Server time ISO-8601


class Message(Base):
    """
    One message in the shared channel.

    Table: messages
    Only the columns of the message's type are populated; the rest stay NULL.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(16), nullable=False)
    text = Column(Text, nullable=True)
    emoji = Column(String(32), nullable=True)
    sticker = Column(String(64), nullable=True)
    file_name = Column(String(255), nullable=True)
    file_path = Column(String(255), nullable=True)  # generated attachment name
    file_size = Column(Integer, nullable=True)
    created_at = Column(String, nullable=False, index=True)  # Server time ISO-8601
