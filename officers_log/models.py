from datetime import datetime
from typing import List, Optional
from sqlalchemy import String, DateTime, ForeignKey, JSON, Integer, Float, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

class Base(DeclarativeBase):
    pass

class Actor(Base):
    __tablename__ = "actors"

    id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, default="")
    type: Mapped[str] = mapped_column(String, default="character")  # character, starship, ...
    system: Mapped[dict] = mapped_column(JSON, default=dict)  # determination, stress, ...
    flags: Mapped[dict] = mapped_column(JSON, default=dict)  # namespace -> key -> value
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    items: Mapped[List["Item"]] = relationship(
        "Item", back_populates="actor", cascade="all, delete-orphan",
        order_by="Item.created_time",
    )

class Item(Base):
    """Embedded item: log, value, milestone, focus or talent."""
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String, primary_key=True)  # Opaque, never reused
    actor_id: Mapped[str] = mapped_column(ForeignKey("actors.id"))
    type: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String, default="")
    img: Mapped[str] = mapped_column(String, default="")
    sort: Mapped[int] = mapped_column(Integer, default=0)  # Manual drag order ("custom" sort)
    created_time: Mapped[float] = mapped_column(Float)  # Milliseconds; tie-break key for sorting

    system: Mapped[dict] = mapped_column(JSON, default=dict)
    flags: Mapped[dict] = mapped_column(JSON, default=dict)

    actor: Mapped["Actor"] = relationship("Actor", back_populates="items")

    __table_args__ = (
        Index("ix_items_actor_type", "actor_id", "type"),
    )


class WorldSetting(Base):
    """World-scoped settings such as the mission log map and callback-used map."""
    __tablename__ = "world_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
