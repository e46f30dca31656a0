from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from config import MAX_PAGE_SIZE, get_settings
from errors import (
    DuplicateName,
    Forbidden,
    InvalidCategory,
    InvalidName,
    NotDeletable,
    NotEditable,
    NotFound,
    PersistenceFailure,
    ValidationFailed,
    store_errors,
)
from models import FALLBACK_CATEGORY_NAME, Category, Transaction, TransactionType
from periods import Period, month_period
from schemas import (
    CategoryIn,
    DailyBreakdownItem,
    DashboardSummary,
    Pagination,
    SummaryTotals,
    TransactionIn,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

MAX_CATEGORY_NAME_LENGTH = 100
REQUIRED_TRANSACTION_FIELDS = ("amount", "date", "type", "category_id")
CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _as_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def resolve_month(month: int, year: int) -> Period:
    try:
        return month_period(year, month)
    except ValueError as exc:
        raise ValidationFailed(str(exc)) from exc


def clean_category_name(name: str) -> str:
    """
    Trim a user supplied category name and reject empty, overlong or reserved
    names. The reserved fallback name is matched case-insensitively; plain
    uniqueness is checked case-sensitively by the caller.
    """
    clean_name = (name or "").strip()
    if not clean_name:
        raise InvalidName("Category name cannot be empty")
    if len(clean_name) > MAX_CATEGORY_NAME_LENGTH:
        raise InvalidName(
            f"Category name cannot be longer than {MAX_CATEGORY_NAME_LENGTH} characters"
        )
    if clean_name.casefold() == FALLBACK_CATEGORY_NAME.casefold():
        raise InvalidName(f'Category name "{FALLBACK_CATEGORY_NAME}" is reserved')
    return clean_name


@dataclass
class TransactionPage:
    transactions: list[Transaction]
    pagination: Pagination


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name.asc(), Category.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        if category.user_id != self.user_id:
            raise Forbidden("Category belongs to another user")
        return category

    def fallback(self) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id, Category.is_deletable.is_(False)
            )
        )
        if not category:
            raise PersistenceFailure(
                f'Fallback category "{FALLBACK_CATEGORY_NAME}" is missing'
            )
        return category

    def _name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id, Category.name == name
        )
        if exclude_id:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: CategoryIn) -> Category:
        name = clean_category_name(data.name)
        if self._name_taken(name):
            raise DuplicateName("Category with this name already exists")

        category = Category(user_id=self.user_id, name=name, is_deletable=True)
        with store_errors(self.session, "create category"):
            self.session.add(category)
            self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: str, data: CategoryIn) -> Category:
        category = self.get(category_id)
        if not category.is_deletable:
            raise NotEditable("Category cannot be renamed")

        name = clean_category_name(data.name)
        if name == category.name:
            return category
        if self._name_taken(name, exclude_id=category.id):
            raise DuplicateName("Category with this name already exists")

        with store_errors(self.session, "update category"):
            category.name = name
            self.session.commit()
        self.session.refresh(category)
        return category

    def _count_references(self, category_id: str) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.category_id == category_id
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def delete(self, category_id: str) -> None:
        """
        Delete a category and move its transactions to the fallback category.

        Reassignment, deletion and the reference re-check run in one database
        transaction; if any transaction still points at the deleted id the
        whole unit is rolled back and PersistenceFailure is raised.
        """
        category = self.get(category_id)
        if not category.is_deletable:
            raise NotDeletable("Category cannot be deleted")
        fallback_id = self.fallback().id

        with store_errors(self.session, "delete category"):
            result = self.session.execute(
                update(Transaction)
                .where(
                    Transaction.user_id == self.user_id,
                    Transaction.category_id == category_id,
                )
                .values(category_id=fallback_id)
            )
            reassigned = result.rowcount
            self.session.delete(category)
            self.session.flush()

            remaining = self._count_references(category_id)
            if remaining:
                self.session.rollback()
            else:
                self.session.commit()

        if remaining:
            logger.error(
                f"category_delete_aborted: category_id={category_id} remaining={remaining}"
            )
            raise PersistenceFailure(
                f"{remaining} transactions still reference category {category_id}"
            )
        # drop stale category relationships on transactions already loaded
        self.session.expire_all()
        logger.info(
            f"category_deleted: category_id={category_id} reassigned={reassigned}"
        )

    def transaction_counts(self) -> dict[str, int]:
        stmt = (
            select(Transaction.category_id, func.count(Transaction.id))
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.category_id)
        )
        return {
            category_id: int(count)
            for category_id, count in self.session.execute(stmt).all()
        }


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _owned_category(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise InvalidCategory("Category does not exist or belongs to another user")
        return category

    def get(self, transaction_id: str) -> Transaction:
        # unscoped lookup so another owner's row reads as forbidden, not missing
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise NotFound("Transaction not found")
        if txn.user_id != self.user_id:
            raise Forbidden("Transaction belongs to another user")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        self._owned_category(data.category_id)
        txn = Transaction(
            user_id=self.user_id,
            category_id=data.category_id,
            amount=data.amount,
            date=data.date,
            type=data.type,
            note=data.note or None,
        )
        with store_errors(self.session, "create transaction"):
            self.session.add(txn)
            self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: str, data: TransactionUpdate) -> Transaction:
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationFailed("At least one field must be provided for update")
        nulled = [
            name
            for name in REQUIRED_TRANSACTION_FIELDS
            if name in fields and fields[name] is None
        ]
        if nulled:
            raise ValidationFailed(f"Fields cannot be null: {', '.join(nulled)}")

        txn = self.get(transaction_id)
        if "category_id" in fields:
            self._owned_category(fields["category_id"])
        if "note" in fields:
            fields["note"] = fields["note"] or None

        with store_errors(self.session, "update transaction"):
            for name, value in fields.items():
                setattr(txn, name, value)
            self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        with store_errors(self.session, "delete transaction"):
            self.session.delete(txn)
            self.session.commit()

    def list(
        self,
        month: int,
        year: int,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> TransactionPage:
        if page_size is None:
            page_size = get_settings().default_page_size
        if page < 1:
            raise ValidationFailed("Page must be at least 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationFailed(f"Page size must be between 1 and {MAX_PAGE_SIZE}")
        period = resolve_month(month, year)

        in_period = (
            Transaction.user_id == self.user_id,
            Transaction.date.between(period.start, period.end),
        )
        total_items = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(*in_period)
            ).scalar_one()
            or 0
        )
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(*in_period)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        transactions = self.session.scalars(stmt).all()
        return TransactionPage(
            transactions=transactions,
            pagination=Pagination(
                page=page,
                page_size=page_size,
                total_items=total_items,
                total_pages=math.ceil(total_items / page_size),
            ),
        )


def aggregate_transactions(rows: Iterable) -> DashboardSummary:
    """
    Build month totals and the sparse daily series from rows exposing
    ``date``, ``type`` and ``amount``.

    Sums are accumulated unrounded and rounded half-up once at the end.
    The balance is taken from the already rounded totals.
    """
    total_income = Decimal("0")
    total_expenses = Decimal("0")
    buckets: dict[date, list[Decimal]] = defaultdict(
        lambda: [Decimal("0"), Decimal("0")]
    )

    for row in rows:
        amount = _as_decimal(row.amount)
        if row.type == TransactionType.income:
            total_income += amount
            buckets[row.date][0] += amount
        elif row.type == TransactionType.expense:
            total_expenses += amount
            buckets[row.date][1] += amount

    income = round_money(total_income)
    expenses = round_money(total_expenses)
    daily = [
        DailyBreakdownItem(
            date=day,
            income=float(round_money(day_income)),
            expenses=float(round_money(day_expenses)),
        )
        for day, (day_income, day_expenses) in sorted(buckets.items())
    ]
    return DashboardSummary(
        summary=SummaryTotals(
            income=float(income),
            expenses=float(expenses),
            balance=float(round_money(income - expenses)),
        ),
        daily_breakdown=daily,
    )


class DashboardAggregator:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def summarize(self, month: int, year: int) -> DashboardSummary:
        period = resolve_month(month, year)
        rows = self.session.execute(
            select(Transaction.date, Transaction.type, Transaction.amount)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.asc())
        ).all()
        return aggregate_transactions(rows)


class AccountService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def provision(self) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id, Category.is_deletable.is_(False)
            )
        )
        if existing:
            return existing

        category = Category(
            user_id=self.user_id, name=FALLBACK_CATEGORY_NAME, is_deletable=False
        )
        with store_errors(self.session, "provision account"):
            self.session.add(category)
            self.session.commit()
        self.session.refresh(category)
        logger.info(f"account_provisioned: user_id={self.user_id}")
        return category

    def delete_account(self) -> None:
        with store_errors(self.session, "delete account"):
            txn_result = self.session.execute(
                delete(Transaction).where(Transaction.user_id == self.user_id)
            )
            category_result = self.session.execute(
                delete(Category).where(Category.user_id == self.user_id)
            )
            self.session.commit()
        logger.info(
            f"account_deleted: user_id={self.user_id} "
            f"transactions={txn_result.rowcount} categories={category_result.rowcount}"
        )
