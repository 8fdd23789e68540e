# Overview: Invalidation of materialized per-product metric snapshots.

from __future__ import annotations

from typing import Iterable

from sqlalchemy import update

from ..extensions import db
from ..models import ProductMetricSnapshot


def invalidate_product_metrics(product_ids: int | Iterable[int | None]) -> int:
    """
    Mark metric snapshots stale for the given products.

    Called inside the same transaction as the ledger write that changed the
    product, so a committed write never leaves a fresh-looking snapshot
    behind. Returns the number of snapshot rows touched.
    """
    if isinstance(product_ids, int):
        ids = [product_ids]
    else:
        ids = sorted({pid for pid in product_ids if pid is not None})
    if not ids:
        return 0

    result = db.session.execute(
        update(ProductMetricSnapshot)
        .where(ProductMetricSnapshot.product_id.in_(ids))
        .values(is_stale=True)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0
