"""
Transaction store.

Durable record of every PxPay transaction attempt. A row is inserted pending by
``create`` and written exactly once more by ``settle``; nothing else mutates
it. Each call runs in its own session so concurrent callbacks for the same
transaction are linearised by the database.
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dps_enrol.database.models import STATUS_PENDING, STATUS_SETTLED, DpsTransaction
from dps_enrol.exceptions import AlreadySettled, StoreWriteFailed, TransactionNotFound
from dps_enrol.gateway.messages import ProcessResponseResult

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NewTransaction:
    """Request-time fields of a transaction about to be sent to PxPay."""

    instance_id: int
    user_id: int
    course_id: int
    cost: Decimal
    currency: str
    merchant_reference: str
    email: str = ""
    txn_data1: str = ""
    txn_data2: str = ""
    txn_data3: str = ""


class TransactionStore:
    """Persistence for ``DpsTransaction`` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create(self, new: NewTransaction) -> int:
        """
        Insert a pending transaction.

        Args:
            new: Request-time fields

        Returns:
            int: Store-assigned transaction id (sent to PxPay as TxnId)

        Raises:
            StoreWriteFailed: If the row could not be written; nothing is persisted
        """
        transaction = DpsTransaction(
            **asdict(new),
            status=STATUS_PENDING,
            created_at=_utcnow(),
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(transaction)
                    await session.flush()
                    transaction_id = transaction.id
        except SQLAlchemyError as e:
            logger.error(
                "transaction_create_failed",
                instance_id=new.instance_id,
                user_id=new.user_id,
                error=str(e),
            )
            raise StoreWriteFailed(f"Could not record transaction: {e}") from e

        logger.info(
            "transaction_created",
            transaction_id=transaction_id,
            instance_id=new.instance_id,
            user_id=new.user_id,
            cost=str(new.cost),
            currency=new.currency,
        )
        return transaction_id

    async def get(self, transaction_id: int) -> Optional[DpsTransaction]:
        """Return the transaction with ``transaction_id``, or None if absent."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(DpsTransaction).where(DpsTransaction.id == transaction_id)
            )
            return result.scalar_one_or_none()

    async def settle(
        self, transaction_id: int, response: ProcessResponseResult
    ) -> DpsTransaction:
        """
        Write the gateway response onto a pending transaction.

        The update is conditional on the row still being pending, so of two
        concurrent calls for the same id exactly one applies its values and
        the other sees zero affected rows.

        Args:
            transaction_id: Transaction to settle
            response: Decrypted PxPay response

        Returns:
            DpsTransaction: The settled row

        Raises:
            TransactionNotFound: If no such transaction exists
            AlreadySettled: If the transaction was settled before this call
            StoreWriteFailed: If the update could not be written
        """
        values = response.settlement_values()
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(DpsTransaction)
                        .where(
                            DpsTransaction.id == transaction_id,
                            DpsTransaction.status == STATUS_PENDING,
                        )
                        .values(**values, status=STATUS_SETTLED, settled_at=_utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    updated = result.rowcount == 1
                    row = await session.execute(
                        select(DpsTransaction).where(DpsTransaction.id == transaction_id)
                    )
                    transaction = row.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("transaction_settle_failed", transaction_id=transaction_id, error=str(e))
            raise StoreWriteFailed(
                f"Could not settle transaction {transaction_id}: {e}",
                transaction_id=transaction_id,
            ) from e

        if transaction is None:
            raise TransactionNotFound(transaction_id)
        if not updated:
            logger.warning("transaction_already_settled", transaction_id=transaction_id)
            raise AlreadySettled(transaction_id)

        logger.info(
            "transaction_settled",
            transaction_id=transaction_id,
            success=transaction.success,
            response_text=transaction.response_text,
        )
        return transaction

    async def list_stale_pending(self, older_than: datetime) -> List[DpsTransaction]:
        """Pending transactions created before ``older_than``, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(DpsTransaction)
                .where(
                    DpsTransaction.status == STATUS_PENDING,
                    DpsTransaction.created_at < older_than,
                )
                .order_by(DpsTransaction.created_at)
            )
            return list(result.scalars().all())
