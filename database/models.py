"""
SQLAlchemy ORM models for tenants, ESP credentials and campaign stats.

Column types are portable (``JSON`` rather than ``JSONB``) so the same
metadata creates tables on PostgreSQL and on SQLite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    key = Column(String(128), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    esp_provider = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class EspOAuthConnection(Base):
    __tablename__ = "esp_oauth_connections"
    __table_args__ = (
        UniqueConstraint("account_key", "provider", name="uq_esp_oauth_account_provider"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    account_key = Column(String(128), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    location_id = Column(String(128), nullable=True)
    location_name = Column(String(255), nullable=True)
    access_token = Column(Text, nullable=False)       # encrypted
    refresh_token = Column(Text, nullable=False)      # encrypted
    token_expires_at = Column(DateTime(timezone=True), nullable=False)
    scopes = Column(JSON, nullable=False, default=list)
    installed_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class EspConnection(Base):
    """API-key connection."""

    __tablename__ = "esp_connections"
    __table_args__ = (
        UniqueConstraint("account_key", "provider", name="uq_esp_connection_account_provider"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    account_key = Column(String(128), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    api_key = Column(Text, nullable=False)            # encrypted
    account_id = Column(String(128), nullable=True)
    account_name = Column(String(255), nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    installed_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class EspProviderOAuthCredential(Base):
    """Provider-level (agency) OAuth grant, one per provider."""

    __tablename__ = "esp_provider_oauth_credentials"

    id = Column(String(36), primary_key=True, default=_uuid)
    provider = Column(String(32), nullable=False, unique=True)
    subject_type = Column(String(32), nullable=True)
    subject_id = Column(String(128), nullable=True)
    access_token = Column(Text, nullable=False)       # encrypted
    refresh_token = Column(Text, nullable=False)      # encrypted
    token_expires_at = Column(DateTime(timezone=True), nullable=False)
    scopes = Column(JSON, nullable=False, default=list)
    installed_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class CampaignEmailStats(Base):
    __tablename__ = "campaign_email_stats"
    __table_args__ = (
        UniqueConstraint("provider", "account_id", "campaign_id", name="uq_campaign_email_stats_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(32), nullable=False)
    account_id = Column(String(128), nullable=False)
    campaign_id = Column(String(128), nullable=False)
    delivered_count = Column(Integer, nullable=False, default=0)
    opened_count = Column(Integer, nullable=False, default=0)
    clicked_count = Column(Integer, nullable=False, default=0)
    bounced_count = Column(Integer, nullable=False, default=0)
    complained_count = Column(Integer, nullable=False, default=0)
    unsubscribed_count = Column(Integer, nullable=False, default=0)
    first_delivered_at = Column(DateTime(timezone=True), nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)
