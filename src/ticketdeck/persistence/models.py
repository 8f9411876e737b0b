"""SQLAlchemy models for the snapshot file."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - used at runtime for SQLAlchemy
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Bump whenever a table or payload layout changes; older files are ignored.
SCHEMA_VERSION = 1


class Base(DeclarativeBase):
    """Base class for all snapshot models."""

    pass


class SnapshotMeta(Base):
    """Single-row table describing the snapshot stored in this file."""

    __tablename__ = "snapshot_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    project: Mapped[str] = mapped_column(String(255), nullable=False)
    saved_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    current_user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SnapshotMeta(project={self.project!r}, "
            f"schema_version={self.schema_version!r}, saved_at={self.saved_at!r})>"
        )


class TicketRow(Base):
    """One cached ticket, serialized with ``Ticket.to_dict``."""

    __tablename__ = "tickets"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    status: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<TicketRow(key={self.key!r}, status={self.status!r})>"


class EpicRow(Base):
    """One cached epic, serialized with ``Epic.to_dict``."""

    __tablename__ = "epics"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class TeamMemberRow(Base):
    """One roster entry."""

    __tablename__ = "team_members"

    email: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
