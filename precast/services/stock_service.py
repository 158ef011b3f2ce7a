"""
Stockyard acceptance.

A finished element waits in PrecastStock with ``stockyard=False`` until
the manager of its yard accepts it. Acceptance flips ``stockyard`` and
takes the element out of the pipeline (``instage=False``).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from precast.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from precast.models import db
from precast.models.production import Element
from precast.models.stock import PrecastStock, ProjectStockyard

logger = logging.getLogger(__name__)


def _manager_of(project_id, stockyard_id):
    return db.session.execute(
        select(ProjectStockyard.manager_id).where(
            ProjectStockyard.project_id == project_id,
            ProjectStockyard.stockyard_id == stockyard_id,
        )
    ).scalar_one_or_none()


def accept_stock(stock_id, actor_id, stockyard_id=None):
    """Accept one PrecastStock row into its yard.

    ``stockyard_id`` is only needed for rows created without a yard.
    Accepting an already accepted row is a no-op.
    """
    stock = db.session.execute(
        select(PrecastStock).where(PrecastStock.id == stock_id).with_for_update()
    ).scalar_one_or_none()
    if stock is None:
        raise NotFoundError(resource="PrecastStock", resource_id=stock_id)

    if stock.stockyard:
        return stock.to_dict()

    yard = stock.stockyard_id
    if yard is None:
        if stockyard_id is None:
            raise ValidationError(
                "stockyard_id is required for stock without a yard",
                details={"stock_id": stock_id},
            )
        yard = stockyard_id
    elif stockyard_id is not None and stockyard_id != yard:
        raise ValidationError(
            f"Stock {stock_id} is bound to stockyard {yard}",
            details={"stockyard_id": yard},
        )

    if actor_id != _manager_of(stock.project_id, yard):
        raise PermissionDeniedError(
            f"User {actor_id} does not manage stockyard {yard}",
            details={"stock_id": stock_id, "stockyard_id": yard},
        )

    try:
        stock.stockyard_id = yard
        stock.stockyard = True
        stock.accepted_by = actor_id
        stock.accepted_at = datetime.now(timezone.utc)
        element = db.session.get(Element, stock.element_id)
        if element is not None:
            element.instage = False
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Stock accepted: stock_id=%s stockyard_id=%s by user_id=%s", stock_id, yard, actor_id)
    return stock.to_dict()
