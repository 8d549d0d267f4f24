from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, Identity, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.postgres import Base


def generate_uuid() -> str:
    return str(uuid4())


class Decision(Base):
    """One question-plus-options session.

    options, weights and clarifying_answers hold JSON text. They are decoded
    per record when read so one corrupt row cannot break a whole listing.
    """

    __tablename__ = "decisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    # Insertion order, used to break created_at ties
    seq: Mapped[int] = mapped_column(Integer, Identity(), unique=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    question: Mapped[str] = mapped_column(Text)
    options: Mapped[str] = mapped_column(Text)
    clarifying_answers: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weights: Mapped[str] = mapped_column(Text)
    analysis: Mapped[str] = mapped_column(Text, default="")
    explanation: Mapped[str] = mapped_column(Text, default="")
    initial_choice: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    result: Mapped[str] = mapped_column(String(500))
    final_choice: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("ix_decisions_user_created", "user_id", "created_at"),)
