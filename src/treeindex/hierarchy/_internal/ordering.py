"""Keeps a numeric sibling-order column contiguous.

Only ever touches one sibling group (the children of one parent, or the
roots when the parent is NULL). Siblings are ranked by their current order
value, NULLs last, ties broken by id, then renumbered base, base + step, ...
Rows already holding the right value are not rewritten.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import bindparam, case, select, update

from treeindex.config.constants import NUMERIC_ORDER_STEP

if TYPE_CHECKING:
    from sqlalchemy import Column, Table
    from sqlalchemy.orm import Session

logger = structlog.get_logger()


class SortOrderMaintainer:
    def __init__(
        self,
        node_table: Table,
        id_column: Column[Any],
        parent_column: Column[Any],
        order_column: Column[Any],
        base: int = 0,
        step: int = NUMERIC_ORDER_STEP,
    ) -> None:
        self.node_table = node_table
        self.id_column = id_column
        self.parent_column = parent_column
        self.order_column = order_column
        self.base = base
        self.step = step

    def _group_filter(self, parent_id: Any) -> Any:
        if parent_id is None:
            return self.parent_column.is_(None)
        return self.parent_column == parent_id

    def reorder(self, session: Session, parent_id: Any) -> int:
        """Renumber the sibling group under parent_id. Returns rows updated."""
        stmt = (
            select(self.id_column, self.order_column)
            .where(self._group_filter(parent_id))
            .order_by(
                case((self.order_column.is_(None), 1), else_=0),
                self.order_column,
                self.id_column,
            )
        )
        changes = [
            {"_node_id": node_id, "_order": self.base + i * self.step}
            for i, (node_id, current) in enumerate(session.execute(stmt))
            if current != self.base + i * self.step
        ]
        if not changes:
            return 0

        session.execute(
            update(self.node_table)
            .where(self.id_column == bindparam("_node_id"))
            .values({self.order_column.name: bindparam("_order")}),
            changes,
        )
        logger.debug(
            "siblings_reordered",
            table=self.node_table.name,
            parent_id=parent_id,
            updated=len(changes),
        )
        return len(changes)
