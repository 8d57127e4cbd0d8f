from typing import Iterable, List, Optional, Tuple

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from sandcastle.core.logging import get_logger
from sandcastle.models.transaction import Transaction
from sandcastle.models.user import User  # noqa: F401  (registers the users table)
from sandcastle.schemas.transaction import ExtractedTransaction

logger = get_logger("transaction_store")

DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class TransactionStore:
    """Write side of the imported transactions plus the per-user read."""

    def __init__(self, db: Session):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        try:
            return DIALECT_INSERTS[dialect]
        except KeyError:
            raise NotImplementedError(f"Insert-if-absent is not supported on {dialect}")

    def bulk_insert_if_absent(self, user_id: int, items: Iterable[ExtractedTransaction]) -> int:
        """
        Insert rows keyed by (user_id, message_id), skipping any that already
        exist. Existing rows are never updated. Returns the number inserted.
        """
        rows = [item.to_row(user_id) for item in items]
        if not rows:
            return 0

        stmt = (
            self._insert()(Transaction)
            .values(rows)
            .on_conflict_do_nothing(
                index_elements=[Transaction.user_id, Transaction.message_id],
                index_where=Transaction.message_id.isnot(None),
            )
            .returning(Transaction.id)
        )
        try:
            inserted = len(self.db.execute(stmt).all())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"[user {user_id}] Inserted {inserted} of {len(rows)} transaction(s)")
        return inserted

    def list_for_user(
        self, user_id: int, category_id: Optional[int] = None, skip: int = 0, limit: int = 100
    ) -> Tuple[List[Transaction], int]:
        q = self.db.query(Transaction).filter(Transaction.user_id == user_id)
        if category_id is not None:
            q = q.filter(Transaction.category_id == category_id)
        total = q.count()
        items = q.order_by(Transaction.occurred_at.desc()).offset(skip).limit(limit).all()
        return items, total
