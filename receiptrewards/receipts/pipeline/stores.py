"""
Store lookup for the upload pipeline.

Maps a StoreModel row to the read-only ``StoreReceiptConfig`` used by the
validator, and resolves a store from an OCR'd tax id when the customer
did not pick one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from receiptrewards.config import settings
from receiptrewards.receipts.models.store import StoreModel
from receiptrewards.receipts.schemas import StoreReceiptConfig

logger = logging.getLogger(__name__)

# Characters OCR commonly reads in place of digits
_OCR_DIGITS = str.maketrans({"O": "0", "o": "0", "I": "1", "l": "1", "S": "5", "B": "8"})


def normalize_tax_id(value: Optional[str]) -> str:
    if not value:
        return ""
    return "".join(ch for ch in value.translate(_OCR_DIGITS) if ch.isdigit())


def to_store_config(store: StoreModel) -> StoreReceiptConfig:
    return StoreReceiptConfig(
        store_id=store.id,
        name=store.name,
        tin=store.tin,
        branch_name=store.branch_name,
        min_receipt_amount=(
            store.min_receipt_amount
            if store.min_receipt_amount is not None
            else settings.DEFAULT_MIN_RECEIPT_AMOUNT
        ),
        receipt_validity_hours=(
            store.receipt_validity_hours
            if store.receipt_validity_hours is not None
            else settings.DEFAULT_RECEIPT_VALIDITY_HOURS
        ),
        allow_receipt_uploads=store.allow_receipt_uploads,
    )


@dataclass
class StoreMatch:
    store: StoreModel
    method: str  # exact | branch | fuzzy


def _one_digit_apart(a: str, b: str) -> bool:
    return len(a) == len(b) and sum(1 for x, y in zip(a, b) if x != y) == 1


def _branch_matches(store: StoreModel, branch_text: Optional[str]) -> bool:
    if not store.branch_name or not branch_text:
        return False
    return store.branch_name.lower() in branch_text.lower()


def resolve_store(
    db: Session, tax_id: Optional[str], branch_text: Optional[str] = None
) -> Optional[StoreMatch]:
    """Find the store a receipt belongs to from its tax id.

    Returns ``None`` when the tax id is missing, unmatched, or ambiguous.
    """
    wanted = normalize_tax_id(tax_id)
    if not wanted:
        return None

    candidates = (
        db.query(StoreModel)
        .filter(
            StoreModel.is_active.is_(True),
            StoreModel.allow_receipt_uploads.is_(True),
            StoreModel.tin.isnot(None),
        )
        .all()
    )

    exact = [s for s in candidates if normalize_tax_id(s.tin) == wanted]
    if len(exact) == 1:
        return StoreMatch(exact[0], "exact")
    if len(exact) > 1:
        by_branch = [s for s in exact if _branch_matches(s, branch_text)]
        if len(by_branch) == 1:
            return StoreMatch(by_branch[0], "branch")
        logger.warning("Tax id %s matches %d stores, branch did not disambiguate", wanted, len(exact))
        return None

    fuzzy = [s for s in candidates if _one_digit_apart(normalize_tax_id(s.tin), wanted)]
    if len(fuzzy) == 1:
        logger.info("Fuzzy tax id match %s -> store %s", wanted, fuzzy[0].id)
        return StoreMatch(fuzzy[0], "fuzzy")
    return None
