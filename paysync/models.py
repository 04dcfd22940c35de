# models.py

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

PAYMENT_PENDING = "pending"
PAYMENT_SUCCESS = "success"
PAYMENT_FAILED = "failed"


def utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


class SerializableMixin:
    def to_dict(self):
        return {c.name: _iso(getattr(self, c.name)) for c in self.__table__.columns}


class Payment(SerializableMixin, Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String, unique=True, nullable=False, index=True)
    client_id = Column(String, nullable=False, index=True)
    amount = Column(String, nullable=False)  # as received, converted when posted to UISP
    currency_code = Column(String, default="KES")
    payment_type = Column(String)
    payment_method = Column(String)
    created_at = Column(String)                  # as reported by Splynx
    status = Column(String, default=PAYMENT_PENDING, nullable=False, index=True)
    response_payload = Column(Text)              # UISP response JSON on success
    error_message = Column(Text)                 # set on failure
    processed_at = Column(DateTime(timezone=True))
    received_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Client(SerializableMixin, Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=False)   # UISP client id
    user_ident = Column(String, index=True)
    first_name = Column(String)
    last_name = Column(String)
    company_name = Column(String)
    email = Column(String, index=True)
    phone = Column(String)
    street1 = Column(String)
    city = Column(String)
    zip_code = Column(String)
    is_active = Column(Boolean, default=True)
    is_suspended = Column(Boolean, default=False)
    account_balance = Column(Float, default=0.0)
    account_outstanding = Column(Float, default=0.0)
    account_credit = Column(Float, default=0.0)
    currency_code = Column(String)
    raw_data = Column(Text)
    last_payment_at = Column(DateTime(timezone=True))
    synced_at = Column(DateTime(timezone=True), default=utcnow)


class WebhookLog(SerializableMixin, Base):
    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, index=True)
    payload = Column(Text)
    headers = Column(Text)
    source_ip = Column(String)
    validated = Column(Boolean, default=False)
    received_at = Column(DateTime(timezone=True), default=utcnow)


class SyncLog(SerializableMixin, Base):
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    sync_type = Column(String, nullable=False)     # full / single
    status = Column(String, nullable=False)        # success / partial / failed
    total_clients = Column(Integer, default=0)
    synced_clients = Column(Integer, default=0)
    failed_clients = Column(Integer, default=0)
    error_message = Column(Text)
    duration_ms = Column(Integer)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True), default=utcnow)
