"""
paysync/database.py

Async SQLAlchemy setup and the persistence gateway. PaymentStore is the only
code that writes payments, clients, webhook logs and sync logs.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import Float, case, cast, desc, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .errors import DuplicatePaymentError, PersistenceError
from .models import (
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_SUCCESS,
    Base,
    Client,
    Payment,
    SyncLog,
    WebhookLog,
    utcnow,
)


def create_engine(database_url: str) -> AsyncEngine:
    kwargs: Dict[str, Any] = {"echo": False}
    if database_url.startswith("sqlite") and (":memory:" in database_url or database_url.endswith("://")):
        # one shared connection, otherwise every session sees an empty database
        kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    return create_async_engine(database_url, **kwargs)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _dumps(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class PaymentStore:
    """CRUD over payments, clients and the audit/sync logs."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.Session = async_sessionmaker(engine, expire_on_commit=False)

    # -------------------------
    # Payments
    # -------------------------
    async def insert_payment(self, record: Dict[str, Any]) -> Dict[str, Any]:
        payment = Payment(status=PAYMENT_PENDING, **dict(record, amount=str(record["amount"])))
        try:
            async with self.Session() as session:
                session.add(payment)
                await session.commit()
        except IntegrityError:
            raise DuplicatePaymentError(record["transaction_id"])
        except SQLAlchemyError:
            logger.exception("insert_payment failed")
            raise PersistenceError("Failed to store payment")
        return payment.to_dict()

    async def update_payment_status(
        self,
        transaction_id: str,
        status: str,
        response_payload: Any = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Finalize a pending payment. Returns False if the row was not pending."""
        if status not in (PAYMENT_SUCCESS, PAYMENT_FAILED):
            raise ValueError(f"Invalid final status: {status}")
        now = utcnow()
        stmt = (
            update(Payment)
            .where(Payment.transaction_id == transaction_id, Payment.status == PAYMENT_PENDING)
            .values(
                status=status,
                response_payload=_dumps(response_payload),
                error_message=error_message,
                processed_at=now,
                updated_at=now,
            )
        )
        try:
            async with self.Session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("update_payment_status failed for {}", transaction_id)
            raise PersistenceError("Failed to update payment status")
        if result.rowcount == 0:
            logger.warning("Payment {} not pending, status {} not applied", transaction_id, status)
            return False
        return True

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        stmt = select(Payment).where(Payment.transaction_id == transaction_id)
        row = await self._scalar(stmt)
        return row.to_dict() if row else None

    async def get_all_payments(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        stmt = select(Payment).order_by(desc(Payment.id)).limit(limit).offset(offset)
        return [p.to_dict() for p in await self._scalars(stmt)]

    async def get_payments_by_client_id(self, client_id) -> List[Dict[str, Any]]:
        stmt = select(Payment).where(Payment.client_id == str(client_id)).order_by(desc(Payment.id))
        return [p.to_dict() for p in await self._scalars(stmt)]

    async def get_payment_stats(self) -> Dict[str, Any]:
        stmt = select(
            func.count(Payment.id),
            func.sum(case((Payment.status == PAYMENT_SUCCESS, 1), else_=0)),
            func.sum(case((Payment.status == PAYMENT_FAILED, 1), else_=0)),
            func.sum(case((Payment.status == PAYMENT_PENDING, 1), else_=0)),
            func.sum(case((Payment.status == PAYMENT_SUCCESS, cast(Payment.amount, Float)), else_=0)),
            func.max(Payment.received_at),
        )
        row = (await self._execute(stmt)).one()
        return {
            "total_payments": row[0] or 0,
            "successful_payments": int(row[1] or 0),
            "failed_payments": int(row[2] or 0),
            "pending_payments": int(row[3] or 0),
            "total_amount": float(row[4] or 0),
            "last_payment_at": row[5].isoformat() if isinstance(row[5], datetime) else row[5],
        }

    # -------------------------
    # Clients
    # -------------------------
    async def get_all_clients(
        self, limit: int = 100, offset: int = 0, filters: Optional[Dict[str, bool]] = None
    ) -> List[Dict[str, Any]]:
        stmt = select(Client)
        filters = filters or {}
        if "is_active" in filters:
            stmt = stmt.where(Client.is_active == filters["is_active"])
        if "is_suspended" in filters:
            stmt = stmt.where(Client.is_suspended == filters["is_suspended"])
        stmt = stmt.order_by(Client.id).limit(limit).offset(offset)
        return [c.to_dict() for c in await self._scalars(stmt)]

    async def search_clients(self, term: str, limit: int = 100) -> List[Dict[str, Any]]:
        pattern = f"%{term.strip()}%"
        conds = [
            Client.first_name.ilike(pattern),
            Client.last_name.ilike(pattern),
            Client.company_name.ilike(pattern),
            Client.email.ilike(pattern),
            Client.phone.ilike(pattern),
            Client.user_ident.ilike(pattern),
        ]
        if term.strip().isdigit():
            conds.append(Client.id == int(term.strip()))
        stmt = select(Client).where(or_(*conds)).order_by(Client.id).limit(limit)
        return [c.to_dict() for c in await self._scalars(stmt)]

    async def get_client(self, client_id: int) -> Optional[Dict[str, Any]]:
        row = await self._scalar(select(Client).where(Client.id == client_id))
        return row.to_dict() if row else None

    async def get_client_stats(self) -> Dict[str, Any]:
        stmt = select(
            func.count(Client.id),
            func.sum(case((Client.is_active.is_(True), 1), else_=0)),
            func.sum(case((Client.is_suspended.is_(True), 1), else_=0)),
            func.sum(Client.account_outstanding),
            func.max(Client.synced_at),
        )
        row = (await self._execute(stmt)).one()
        total = row[0] or 0
        active = int(row[1] or 0)
        return {
            "total_clients": total,
            "active_clients": active,
            "inactive_clients": total - active,
            "suspended_clients": int(row[2] or 0),
            "total_outstanding": float(row[3] or 0),
            "last_synced_at": row[4].isoformat() if isinstance(row[4], datetime) else row[4],
        }

    async def upsert_client(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self.Session() as session:
                client = await session.get(Client, data["id"])
                if client is None:
                    client = Client(id=data["id"])
                    session.add(client)
                for key, value in data.items():
                    if key != "id":
                        setattr(client, key, value)
                client.synced_at = utcnow()
                await session.commit()
        except SQLAlchemyError:
            logger.exception("upsert_client failed for {}", data.get("id"))
            raise PersistenceError("Failed to store client")
        return client.to_dict()

    async def update_client_last_payment(self, client_id: int, when: Optional[datetime] = None) -> bool:
        stmt = update(Client).where(Client.id == client_id).values(last_payment_at=when or utcnow())
        try:
            async with self.Session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("update_client_last_payment failed for {}", client_id)
            raise PersistenceError(f"Failed to update client {client_id}")
        return result.rowcount > 0

    # -------------------------
    # Logs
    # -------------------------
    async def log_webhook(self, payload: Any, headers: Dict[str, Any], source_ip: Optional[str], validated: bool) -> None:
        entry = WebhookLog(
            payload=_dumps(payload),
            headers=_dumps(dict(headers)),
            source_ip=source_ip,
            validated=bool(validated),
        )
        await self._add(entry, "webhook log")

    async def log_sync(self, **fields) -> Dict[str, Any]:
        entry = SyncLog(**fields)
        await self._add(entry, "sync log")
        return entry.to_dict()

    async def get_recent_sync_logs(self, limit: int = 10) -> List[Dict[str, Any]]:
        stmt = select(SyncLog).order_by(desc(SyncLog.id)).limit(limit)
        return [s.to_dict() for s in await self._scalars(stmt)]

    # -------------------------
    # helpers
    # -------------------------
    async def _add(self, obj, what: str) -> None:
        try:
            async with self.Session() as session:
                session.add(obj)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to write {}", what)
            raise PersistenceError(f"Failed to write {what}")

    async def _execute(self, stmt):
        try:
            async with self.Session() as session:
                return await session.execute(stmt)
        except SQLAlchemyError:
            logger.exception("Query failed")
            raise PersistenceError("Database query failed")

    async def _scalar(self, stmt):
        return (await self._execute(stmt)).scalars().first()

    async def _scalars(self, stmt):
        return list((await self._execute(stmt)).scalars().all())
