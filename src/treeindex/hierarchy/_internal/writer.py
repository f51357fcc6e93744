"""Primitive writes against the closure table.

Each primitive runs while the advisory lock is held. None of them keeps the
closure exact on its own; TreeMaintainer composes them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, literal, or_, select
from sqlalchemy.exc import IntegrityError

from treeindex.core.errors import ConstraintViolation
from treeindex.hierarchy.models import HierarchyRow

if TYPE_CHECKING:
    from sqlalchemy import Executable, Table
    from sqlalchemy.orm import Session


class IndexWriter:
    """Set-based inserts and deletes on one closure table."""

    def __init__(self, hierarchy: Table) -> None:
        self.hierarchy = hierarchy

    def insert_self(self, session: Session, node_id: Any) -> None:
        """Insert the (node, node, 0) row."""
        stmt = insert(self.hierarchy).values(ancestor_id=node_id, descendant_id=node_id, generations=0)
        self._execute_insert(session, stmt, node_id)

    def copy_ancestors_from_parent(self, session: Session, node_id: Any, parent_id: Any) -> int:
        """For every row (a, parent, g) insert (a, node, g + 1).

        One INSERT ... SELECT; returns the number of rows inserted.
        """
        h = self.hierarchy
        source = select(
            h.c.ancestor_id,
            literal(node_id, type_=h.c.descendant_id.type),
            h.c.generations + 1,
        ).where(h.c.descendant_id == parent_id)
        stmt = insert(h).from_select(["ancestor_id", "descendant_id", "generations"], source)
        return self._execute_insert(session, stmt, node_id)

    def delete_all_referencing(self, session: Session, node_id: Any) -> int:
        """Delete every row where the node is the ancestor or the descendant."""
        h = self.hierarchy
        result = session.execute(
            delete(h).where(or_(h.c.ancestor_id == node_id, h.c.descendant_id == node_id))
        )
        return int(result.rowcount or 0)

    def truncate(self, session: Session) -> int:
        result = session.execute(delete(self.hierarchy))
        return int(result.rowcount or 0)

    def snapshot(self, session: Session) -> set[HierarchyRow]:
        """All rows currently in the table."""
        h = self.hierarchy
        result = session.execute(select(h.c.ancestor_id, h.c.descendant_id, h.c.generations))
        return {HierarchyRow(*row) for row in result}

    def _execute_insert(self, session: Session, stmt: Executable, node_id: Any) -> int:
        try:
            result = session.execute(stmt)
        except IntegrityError as e:
            raise ConstraintViolation.duplicate_row(self.hierarchy.name, node_id, str(e.orig)) from e
        return int(result.rowcount or 0)
