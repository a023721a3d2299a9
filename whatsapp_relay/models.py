"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
Both store backends in storage.py read their column layout from here.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, Index
from sqlalchemy.orm import declarative_base


Base = declarative_base()

MESSAGES_TABLE = "messages"
CONTACTS_TABLE = "contacts"


class Message(Base):
    """
    One ledger row per logged event (incoming, status, reply, broadcast).

    Table: messages
    Primary Key: id (surrogate, the provider message_id is not unique
    across kinds)
    """
    __tablename__ = MESSAGES_TABLE

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String, nullable=False, index=True)  # incoming | status | reply | broadcast
    from_ = Column("from", String, nullable=True)
    to = Column(String, nullable=True)
    phone = Column(String, nullable=True, index=True)  # counterparty regardless of direction
    type = Column(String, nullable=True)  # text | interactive | other
    body = Column(Text, nullable=True)
    message_id = Column(String, nullable=True, index=True)
    reply_to_message_id = Column(String, nullable=True)
    status = Column(String, nullable=True)
    timestamp = Column(String, nullable=True)
    interactive = Column(JSON, nullable=True)
    interactive_selection = Column(JSON, nullable=True)
    raw = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("messages_from_created_at_idx", "from", "created_at"),
    )


class Contact(Base):
    """
    Rolling per-phone summary of the latest interaction.

    Table: contacts
    Primary Key: phone
    """
    __tablename__ = CONTACTS_TABLE

    phone = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    last_message_id = Column(String, nullable=True)
    last_body = Column(Text, nullable=True)
    last_type = Column(String, nullable=True)
    last_kind = Column(String, nullable=True)
    last_direction = Column(String, nullable=True)  # incoming | reply | status
    last_sender_id = Column(String, nullable=True)
    last_recipient_phone = Column(String, nullable=True)
    last_timestamp = Column(DateTime(timezone=True), nullable=True)
    total_messages = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False)
