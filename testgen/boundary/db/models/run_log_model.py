"""
Run log ORM model.

Immutable, timestamped entries attached to a run. Rows are only ever
inserted.

Dependencies: sqlalchemy, testgen.boundary.db.base
System role: Run audit trail
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from testgen.boundary.db.base import Base, UUIDMixin, utcnow

if TYPE_CHECKING:
    from testgen.boundary.db.models.run_model import RunModel


class RunLogModel(Base, UUIDMixin):
    """
    Run log entry.

    Attributes:
        run_id: Owning run
        timestamp: When the entry was written (UTC)
        level: info, warning or error
        message: Human-readable message
        log_metadata: Structured details (column name 'metadata')
    """

    __tablename__ = "run_logs"

    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    level: Mapped[str] = mapped_column(String(16), nullable=False, default="info")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # 'metadata' is reserved on declarative classes
    log_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    run: Mapped["RunModel"] = relationship(back_populates="logs")
