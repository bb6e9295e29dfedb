from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from app.models.user import Base


class ExportConfig(Base):
    __tablename__ = "ExportConfig"

    ConfigID = Column(Integer, primary_key=True, autoincrement=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    Name = Column(String(200), nullable=False)
    DataType = Column(String(16), nullable=False)  # accounts|campaigns|adsets|ads

    # Destination
    SpreadsheetUrl = Column(String(500), nullable=True)
    SpreadsheetID = Column(String(128), nullable=False)
    SpreadsheetName = Column(String(255), nullable=True)
    SheetName = Column(String(255), nullable=False)

    # Shape
    ColumnMapping = Column(Text, nullable=False)  # JSON {field: "A".."ZZ" | "skip"}
    IncludeDate = Column(Boolean, default=True)
    AppendMode = Column(Boolean, default=True)

    # Scope
    AccountIDs = Column(Text, nullable=False, default="[]")  # JSON list of ad account ids

    # Recurrence
    AutoExportEnabled = Column(Boolean, default=False, index=True)
    ExportFrequency = Column(String(16), nullable=True)  # daily|hourly
    ExportHour = Column(Integer, nullable=True)
    ExportMinute = Column(Integer, nullable=True)
    ExportInterval = Column(Integer, nullable=True)  # hours, hourly frequency only
    UseAdAccountTimezone = Column(Boolean, default=False)
    AdAccountTimezone = Column(String(100), nullable=True)

    # Run state (written by the scheduler); LastRunAt is naive UTC
    LastRunAt = Column(DateTime, nullable=True)
    LastRunStatus = Column(String(16), nullable=True)  # success|failed
    LastRunRows = Column(Integer, nullable=True)
    LastRunError = Column(Text, nullable=True)

    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now(), onupdate=func.now())
