"""Pre-write check that a node never becomes its own ancestor."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select

from treeindex.core.errors import CycleError

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.orm import Session

logger = structlog.get_logger()


class CycleValidator:
    """Rejects a parent that is the node itself or one of its descendants.

    Descendancy is a single closure table lookup (ancestor = node), not a
    walk up the parent pointers.
    """

    def __init__(self, hierarchy: Table, field: str) -> None:
        self.hierarchy = hierarchy
        self.field = field

    def is_descendant(self, session: Session, node_id: Any, candidate_id: Any) -> bool:
        h = self.hierarchy
        stmt = (
            select(h.c.generations)
            .where(h.c.ancestor_id == node_id, h.c.descendant_id == candidate_id)
            .limit(1)
        )
        return session.execute(stmt).first() is not None

    def check(self, session: Session, node_id: Any, parent_id: Any) -> None:
        """Raise CycleError if parent_id can't become node_id's parent."""
        if parent_id is None:
            return
        if parent_id == node_id or self.is_descendant(session, node_id, parent_id):
            logger.info("cycle_rejected", node_id=node_id, parent_id=parent_id, table=self.hierarchy.name)
            raise CycleError.ancestor_as_descendant(node_id, parent_id, self.field)
