"""Data access layer for merchants, slabs and mandate records"""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, not_, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from emandate_gateway.domain.exceptions import ConflictError
from emandate_gateway.domain.models import CustomerDetails, Slab
from emandate_gateway.infrastructure.database.models import (
    GatewayCorrelation,
    Merchant,
    MerchantSlab,
    ReconciliationTask,
    Transaction,
    User,
    UserMandate,
)
from emandate_gateway.utils.date_utils import utcnow

SLAB_SORT_COLUMNS = {
    "slab_from": MerchantSlab.slab_from,
    "slab_to": MerchantSlab.slab_to,
    "processing_fee": MerchantSlab.processing_fee,
    "effective_date": MerchantSlab.effective_date,
    "created_at": MerchantSlab.created_at,
}

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _upsert(
    db: Session,
    model,
    values: Dict[str, Any],
    conflict_column: str,
    update_set: Callable[[Any], Dict[str, Any]],
) -> None:
    """Single INSERT ... ON CONFLICT DO UPDATE keyed by a natural-key column"""
    dialect = db.get_bind().dialect.name
    try:
        insert = _INSERT_BY_DIALECT[dialect]
    except KeyError:
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}") from None

    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[conflict_column],
        set_={**update_set(stmt.excluded), "updated_at": utcnow()},
    )
    db.execute(stmt)


def _keep_if_blank(excluded_column, current_column):
    """New value unless it is NULL or empty, otherwise the stored one"""
    return func.coalesce(func.nullif(excluded_column, ""), current_column)


class MerchantRepository:
    """Repository for merchants"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_merchant_id(self, merchant_id: str) -> Optional[Merchant]:
        return self.db.query(Merchant).filter(Merchant.merchant_id == merchant_id).first()

    def get_by_code(self, merchant_code: str) -> Optional[Merchant]:
        return (
            self.db.query(Merchant)
            .filter(Merchant.merchant_code == merchant_code)
            .populate_existing()
            .first()
        )

    def create(self, merchant_id: str, merchant_code: str, name: str | None, status: str = "Active") -> Merchant:
        existing = (
            self.db.query(Merchant)
            .filter((Merchant.merchant_id == merchant_id) | (Merchant.merchant_code == merchant_code))
            .first()
        )
        if existing:
            raise ConflictError("Merchant with this ID or code already exists")

        merchant = Merchant(merchant_id=merchant_id, merchant_code=merchant_code, name=name, status=status)
        self.db.add(merchant)
        self.db.flush()
        return merchant

    def upsert_by_code(self, merchant_code: str, name: str | None = None, status: str = "Active") -> Merchant:
        """Create the merchant keyed by business code, or refresh its mutable fields"""
        _upsert(
            self.db,
            Merchant,
            {
                "id": uuid.uuid4(),
                "merchant_id": merchant_code,
                "merchant_code": merchant_code,
                "name": name or merchant_code,
                "status": status,
            },
            "merchant_code",
            # Stored name survives when the caller has none to offer
            lambda excluded: {"status": excluded.status, **({"name": excluded.name} if name else {})},
        )
        return self.get_by_code(merchant_code)


class SlabRepository:
    """Repository for merchant slabs"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def to_domain(db_slab: MerchantSlab) -> Slab:
        return Slab(
            slab_id=str(db_slab.id),
            merchant_id=db_slab.merchant_id,
            slab_from=db_slab.slab_from,
            slab_to=db_slab.slab_to,
            base_amount=db_slab.base_amount,
            emi_amount=db_slab.emi_amount,
            emi_tenure=db_slab.emi_tenure,
            frequency=db_slab.frequency,
            processing_fee=db_slab.processing_fee,
            effective_date=db_slab.effective_date,
            expiry_date=db_slab.expiry_date,
            mandate_category=db_slab.mandate_category,
            status=db_slab.status,
            duration=db_slab.duration,
            remarks=db_slab.remarks,
        )

    def get(self, slab_id: uuid.UUID) -> Optional[MerchantSlab]:
        return self.db.query(MerchantSlab).filter(MerchantSlab.id == slab_id).first()

    @staticmethod
    def _active_clause(now: datetime):
        return and_(
            MerchantSlab.status == 1,
            MerchantSlab.effective_date <= now,
            or_(MerchantSlab.expiry_date.is_(None), MerchantSlab.expiry_date > now),
        )

    def list_for_merchant(
        self,
        merchant_id: str,
        now: datetime,
        filters: Optional[Dict[str, Any]] = None,
        sort_by: str = "slab_from",
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[MerchantSlab], int]:
        """
        Filtered page of a merchant's slabs and the total number matching.

        Filters: active (bool), frequency, mandate_category, status,
        amount_min (slab_from floor) and amount_max (slab_to ceiling).
        """
        filters = filters or {}
        query = self.db.query(MerchantSlab).filter(MerchantSlab.merchant_id == merchant_id)

        if filters.get("active") is not None:
            active = self._active_clause(now)
            query = query.filter(active if filters["active"] else not_(active))
        for name in ("frequency", "mandate_category", "status"):
            if filters.get(name) is not None:
                query = query.filter(getattr(MerchantSlab, name) == filters[name])
        if filters.get("amount_min") is not None:
            query = query.filter(MerchantSlab.slab_from >= filters["amount_min"])
        if filters.get("amount_max") is not None:
            query = query.filter(MerchantSlab.slab_to <= filters["amount_max"])

        total = query.count()
        column = SLAB_SORT_COLUMNS[sort_by]
        query = query.order_by(column.desc() if descending else column.asc(), MerchantSlab.created_at.asc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all(), total

    def active_for_merchant(self, merchant_id: str, now: datetime) -> List[MerchantSlab]:
        """Slabs with status 1 inside their effective window, lowest range first"""
        return (
            self.db.query(MerchantSlab)
            .filter(MerchantSlab.merchant_id == merchant_id, self._active_clause(now))
            .order_by(MerchantSlab.slab_from.asc())
            .all()
        )

    def create(self, slab: Slab) -> MerchantSlab:
        db_slab = MerchantSlab()
        self._apply(db_slab, slab)
        self.db.add(db_slab)
        self.db.flush()
        return db_slab

    def update(self, db_slab: MerchantSlab, slab: Slab) -> MerchantSlab:
        self._apply(db_slab, slab)
        self.db.flush()
        return db_slab

    def delete(self, db_slab: MerchantSlab) -> None:
        self.db.delete(db_slab)
        self.db.flush()

    @staticmethod
    def _apply(db_slab: MerchantSlab, slab: Slab) -> None:
        db_slab.merchant_id = slab.merchant_id
        db_slab.slab_from = slab.slab_from
        db_slab.slab_to = slab.slab_to
        db_slab.base_amount = slab.base_amount
        db_slab.emi_amount = slab.emi_amount
        db_slab.emi_tenure = slab.emi_tenure
        db_slab.duration = slab.duration
        db_slab.frequency = slab.frequency
        db_slab.processing_fee = slab.processing_fee
        db_slab.mandate_category = slab.mandate_category
        db_slab.status = slab.status
        db_slab.effective_date = slab.effective_date
        db_slab.expiry_date = slab.expiry_date
        db_slab.remarks = slab.remarks


class UserRepository:
    """Repository for payers"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_user_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.user_id == user_id).populate_existing().first()

    def upsert_by_email(self, customer: CustomerDetails, user_id: str | None = None) -> User:
        """
        Create the user keyed by email, or merge non-empty fields into it.

        Blank name, mobile, PAN or telephone never overwrite stored values.
        """
        table = User.__table__
        _upsert(
            self.db,
            User,
            {
                "id": uuid.uuid4(),
                "user_id": user_id or str(uuid.uuid4()),
                "name": customer.name,
                "mobile": customer.mobile,
                "email": customer.email,
                "pan": customer.pan or "",
                "telephone": customer.telephone or "",
            },
            "email",
            lambda excluded: {
                "name": _keep_if_blank(excluded.name, table.c.name),
                "mobile": _keep_if_blank(excluded.mobile, table.c.mobile),
                "pan": _keep_if_blank(excluded.pan, table.c.pan),
                "telephone": _keep_if_blank(excluded.telephone, table.c.telephone),
            },
        )
        return self.db.query(User).filter(User.email == customer.email).populate_existing().one()


class TransactionRepository:
    """Repository for mandate transactions"""

    UPDATABLE = (
        "client_transaction_id",
        "sabpaisa_txn_id",
        "user_id",
        "merchant_id",
        "amount",
        "monthly_emi",
        "max_amount",
        "start_date",
        "end_date",
        "purpose",
        "status",
    )

    def __init__(self, db: Session):
        self.db = db

    def get(self, transaction_id: str) -> Optional[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.transaction_id == transaction_id)
            .populate_existing()
            .first()
        )

    def upsert(self, values: Dict[str, Any]) -> Transaction:
        """Insert or update keyed by transaction_id"""
        _upsert(
            self.db,
            Transaction,
            {"id": uuid.uuid4(), **values},
            "transaction_id",
            lambda excluded: {
                column: getattr(excluded, column) for column in self.UPDATABLE if column in values
            },
        )
        return self.get(values["transaction_id"])

    def latest_by_sabpaisa_txn_id(self, sabpaisa_txn_id: str) -> Optional[Transaction]:
        """Most recently created transaction carrying a gateway correlation id"""
        return (
            self.db.query(Transaction)
            .filter(Transaction.sabpaisa_txn_id == sabpaisa_txn_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .populate_existing()
            .first()
        )

    def update_fields(self, transaction_id: str, **fields: Any) -> Optional[Transaction]:
        transaction = self.get(transaction_id)
        if transaction is None:
            return None
        for key, value in fields.items():
            setattr(transaction, key, value)
        self.db.flush()
        return transaction


class UserMandateRepository:
    """Repository for bank mandate registrations"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_transaction_id(self, transaction_id: str) -> Optional[UserMandate]:
        return (
            self.db.query(UserMandate)
            .filter(UserMandate.transaction_id == transaction_id)
            .populate_existing()
            .first()
        )

    def upsert(self, values: Dict[str, Any]) -> UserMandate:
        """Insert or update keyed by transaction_id"""
        _upsert(
            self.db,
            UserMandate,
            {"id": uuid.uuid4(), **values},
            "transaction_id",
            lambda excluded: {
                column: getattr(excluded, column) for column in values if column != "transaction_id"
            },
        )
        return self.get_by_transaction_id(values["transaction_id"])


class CorrelationRepository:
    """Gateway consumer id -> transaction index"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, consumer_id: str, transaction_id: str) -> None:
        """Point a consumer id at the latest transaction that used it"""
        _upsert(
            self.db,
            GatewayCorrelation,
            {"id": uuid.uuid4(), "consumer_id": consumer_id, "transaction_id": transaction_id},
            "consumer_id",
            lambda excluded: {"transaction_id": excluded.transaction_id},
        )

    def transaction_for(self, consumer_id: str) -> Optional[Transaction]:
        return (
            self.db.query(Transaction)
            .join(GatewayCorrelation, GatewayCorrelation.transaction_id == Transaction.transaction_id)
            .filter(GatewayCorrelation.consumer_id == consumer_id)
            .populate_existing()
            .first()
        )


class ReconciliationTaskRepository:
    """Repository for the reconciliation outbox"""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, transaction_id: str, consumer_id: str, payload: Dict[str, Any]) -> ReconciliationTask:
        task = ReconciliationTask(transaction_id=transaction_id, consumer_id=consumer_id, payload=payload)
        self.db.add(task)
        self.db.flush()
        return task

    def get(self, task_id: uuid.UUID) -> Optional[ReconciliationTask]:
        return self.db.query(ReconciliationTask).filter(ReconciliationTask.id == task_id).first()

    def pending(self, limit: int = 100) -> List[ReconciliationTask]:
        return (
            self.db.query(ReconciliationTask)
            .filter(ReconciliationTask.status == "pending")
            .order_by(ReconciliationTask.created_at.asc())
            .limit(limit)
            .all()
        )
