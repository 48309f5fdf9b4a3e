from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Post(Base):
    """Дочерняя сущность (posts), сгруппированная по user_id."""

    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # индекс по FK: именно он делает LATERAL-подзапрос дешёвым
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship(
        "User",
        back_populates="posts",
    )
