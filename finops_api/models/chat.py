"""
Chat Models

Direct conversations between two users of the same tenant.

A conversation is identified by its key: the two participant ids sorted
and joined with "_". The key is unique, so both users always land in the
same conversation regardless of who writes first.
"""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import uuid


def conversation_key(user_a: str, user_b: str) -> str:
    return "_".join(sorted([user_a, user_b]))


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    key = Column(String(100), unique=True, nullable=False, index=True)
    participant_a = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    participant_b = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
        passive_deletes=True
    )

    def __repr__(self):
        return f"<Conversation {self.key} (tenant={self.tenant_id})>"

    @property
    def participant_ids(self):
        return [self.participant_a, self.participant_b]

    def other_participant(self, user_id: str) -> str:
        return self.participant_b if user_id == self.participant_a else self.participant_a


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False
    )
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False, default="")
    image_url = Column(String(1024), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User")
    reactions = relationship(
        "Reaction",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    reads = relationship(
        "MessageRead",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        Index('idx_message_conversation_created', 'conversation_id', 'created_at'),
    )

    def __repr__(self):
        return f"<Message {self.id} from {self.sender_id}>"


class Reaction(Base):
    __tablename__ = "reactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    message_id = Column(String(36), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji = Column(String(32), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    message = relationship("Message", back_populates="reactions")

    __table_args__ = (
        UniqueConstraint('message_id', 'user_id', 'emoji', name='uq_reaction_message_user_emoji'),
    )


class MessageRead(Base):
    __tablename__ = "message_reads"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    message_id = Column(String(36), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    read_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    message = relationship("Message", back_populates="reads")

    __table_args__ = (
        UniqueConstraint('message_id', 'user_id', name='uq_message_read_message_user'),
    )
