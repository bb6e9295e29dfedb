import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class User(Base):
    __tablename__ = "Users"
    UserID = Column(Integer, primary_key=True, autoincrement=True)
    FirstName = Column(String(100), nullable=False)
    LastName = Column(String(100), nullable=False)
    Email = Column(String(255), nullable=False, unique=True)
    DateCreated = Column(DateTime, server_default=func.now())
    LastUpdated = Column(DateTime, server_default=func.now(), onupdate=func.now())
    IsActive = Column(Boolean, default=True)
    # Long-lived Marketing API token chosen by the user; preferred over the
    # token of the linked facebook login.
    FacebookAdToken = Column(Text, nullable=True)


class UserSession(Base):
    __tablename__ = "UserSession"
    SessionID = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    CreatedAt = Column(DateTime, server_default=func.now())
    ExpiresAt = Column(DateTime, nullable=True)
    IsActive = Column(Boolean, default=True)
    LastSeen = Column(DateTime, server_default=func.now())


class LinkedAccount(Base):
    """OAuth login linked to a user (one row per provider)."""

    __tablename__ = "LinkedAccount"
    AccountID = Column(Integer, primary_key=True, autoincrement=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    Provider = Column(String(32), nullable=False)  # google|facebook
    ProviderAccountID = Column(String(255), nullable=True)
    AccessToken = Column(Text, nullable=True)
    RefreshToken = Column(Text, nullable=True)
    ExpiresAt = Column(Integer, nullable=True)  # epoch seconds
    Scope = Column(Text, nullable=True)
    UpdatedAt = Column(DateTime, server_default=func.now(), onupdate=func.now())
