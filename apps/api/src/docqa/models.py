from datetime import datetime

from sqlalchemy import DateTime, String, text
from sqlalchemy.orm import Mapped, mapped_column

from docqa.db import Base


class IngestionRecordRow(Base):
    __tablename__ = "ingestion_records"

    # case-folded file name; the display spelling lives in file_name
    file_key: Mapped[str] = mapped_column(String(512), primary_key=True)
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    document_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    index_name: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
