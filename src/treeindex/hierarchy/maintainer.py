"""TreeMaintainer: keeps a closure table exactly in step with a parent column.

Lifecycle hooks are explicit calls made by the code that persists nodes:

    validate        -> rejects a parent change that would create a cycle
    before_save     -> captures new-ness and the parent change (MaintenanceContext)
    (store flush)
    after_save      -> fast insert for a new subtree, else rebuild when needed
    before_destroy  -> drops the node from the index, applies the orphan policy
    (store delete)
    after_destroy   -> compacts the former sibling group

save() and destroy() run those steps in order. Callers own the transaction
and commit once the pipeline returns.

Every mutation of the closure table happens under the tree's AdvisoryLock,
including the whole recursive descent into children. If a sequence fails
halfway, rebuild_forest() reconstructs the table from the parent column.
"""

from __future__ import annotations

from collections.abc import Generator, Iterable
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import case, inspect, select, update
from sqlalchemy.orm import MANYTOONE

from treeindex.core.errors import InternalError
from treeindex.hierarchy._internal.cycle import CycleValidator
from treeindex.hierarchy._internal.lock import AdvisoryLock
from treeindex.hierarchy._internal.ordering import SortOrderMaintainer
from treeindex.hierarchy._internal.writer import IndexWriter
from treeindex.hierarchy.models import (
    HierarchyRow,
    MaintenanceContext,
    MaintenanceOptions,
    OrphanPolicy,
    TreeOptions,
    advisory_lock_name,
    build_hierarchy_table,
)

if TYPE_CHECKING:
    from sqlalchemy import Column, Table
    from sqlalchemy.orm import Session
    from sqlmodel import SQLModel

logger = structlog.get_logger()


class TreeMaintainer:
    """Maintains the closure table of one node table.

    Usage::

        tree = TreeMaintainer.for_model(Category, TreeOptions(order_column="sort_order"))
        SQLModel.metadata.create_all(engine)  # includes category_hierarchies

        with Session(engine) as session:
            tree.save(session, Category(name="root"))
            session.commit()
    """

    def __init__(
        self,
        node_table: Table,
        options: TreeOptions | None = None,
        *,
        hierarchy_table: Table | None = None,
    ) -> None:
        self.options = options or TreeOptions()
        self.node_table = node_table
        self.id_column = self._primary_key(node_table)
        self.parent_column = self._column(node_table, self.options.parent_column)
        self.order_column: Column[Any] | None = (
            self._column(node_table, self.options.order_column)
            if self.options.order_column
            else None
        )
        self.hierarchy_table = hierarchy_table if hierarchy_table is not None else build_hierarchy_table(
            node_table, self.options.hierarchy_table_name
        )
        self.lock = AdvisoryLock(
            advisory_lock_name(self.hierarchy_table, self.options.advisory_lock_name),
            store_level=self.options.with_advisory_lock,
        )
        self.writer = IndexWriter(self.hierarchy_table)
        self.cycles = CycleValidator(self.hierarchy_table, field=self.options.parent_column)
        self.ordering: SortOrderMaintainer | None = None
        if self.order_column is not None:
            self.ordering = SortOrderMaintainer(
                node_table,
                self.id_column,
                self.parent_column,
                self.order_column,
                base=self.options.numeric_order_base,
            )

    @classmethod
    def for_model(cls, model: type[SQLModel], options: TreeOptions | None = None) -> TreeMaintainer:
        """Bind to the table behind a SQLModel (or any mapped) class."""
        return cls(model.__table__, options)  # type: ignore[attr-defined]

    @staticmethod
    def _primary_key(table: Table) -> Column[Any]:
        pk = list(table.primary_key.columns)
        if len(pk) != 1:
            raise InternalError.invalid_node_table(table.name, "expected a single-column primary key")
        return pk[0]

    @staticmethod
    def _column(table: Table, name: str) -> Column[Any]:
        if name not in table.c:
            raise InternalError.invalid_node_table(table.name, f"missing column '{name}'")
        return table.c[name]

    @property
    def sort_order_enabled(self) -> bool:
        return self.ordering is not None

    @contextmanager
    def advisory_lock(self, session: Session) -> Generator[None, None, None]:
        """Hold the tree's lock; nests freely with the maintainer's own holds.

        Wrap store writes and the commit in it to serialize whole units of work::

            with tree.advisory_lock(session):
                tree.save(session, node)
                session.commit()
        """
        with self.lock.hold(session):
            yield

    # ------------------------------------------------------------------
    # Node access
    # ------------------------------------------------------------------

    def _attr_key(self, node: Any, column: Column[Any]) -> str:
        return inspect(node).mapper.get_property_by_column(column).key

    def node_id(self, node: Any) -> Any:
        """Id of a mapped instance; anything else is taken to be an id already."""
        state = inspect(node, raiseerr=False)
        if state is None:
            return node
        return getattr(node, self._attr_key(node, self.id_column))

    def stored_parent_id(self, session: Session, node_id: Any) -> Any:
        """Parent id as currently stored (flushed) in the node table."""
        with session.no_autoflush:
            return session.execute(
                select(self.parent_column).where(self.id_column == node_id)
            ).scalar_one_or_none()

    def child_ids(self, session: Session, node_id: Any) -> list[Any]:
        stmt = select(self.id_column).where(self.parent_column == node_id)
        return list(session.execute(stmt.order_by(*self._sibling_order())).scalars())

    def root_ids(self, session: Session) -> list[Any]:
        stmt = select(self.id_column).where(self.parent_column.is_(None))
        return list(session.execute(stmt.order_by(*self._sibling_order())).scalars())

    def _sibling_order(self) -> list[Any]:
        if self.order_column is None:
            return [self.id_column]
        return [case((self.order_column.is_(None), 1), else_=0), self.order_column, self.id_column]

    def _parent_relationship_keys(self, node: Any) -> list[str]:
        """Many-to-one relationships that write the parent column on flush."""
        return [
            rel.key
            for rel in inspect(node).mapper.relationships
            if rel.direction is MANYTOONE and any(col is self.parent_column for col in rel.local_columns)
        ]

    def _pending_parent_change(self, session: Session, node: Any) -> tuple[bool, Any, Any]:
        """(changed, previous_parent_id, new_parent_id) for an unflushed instance.

        A parent set through a relationship (``node.parent = other``) only
        reaches the column at flush, so relationship history wins over the
        column's. A new parent that has no id yet always counts as a change.
        """
        with session.no_autoflush:
            return self._parent_change(session, node)

    def _parent_change(self, session: Session, node: Any) -> tuple[bool, Any, Any]:
        state = inspect(node)
        key = self._attr_key(node, self.parent_column)
        new_parent_id = getattr(node, key)
        history = state.attrs[key].history
        changed = history.has_changes()
        previous_known = bool(history.deleted)
        previous = history.deleted[0] if previous_known else None
        unsaved_parent = False

        for rel_key in self._parent_relationship_keys(node):
            rel_history = state.attrs[rel_key].history
            if not rel_history.has_changes():
                continue
            changed = True
            target = rel_history.added[0] if rel_history.added else None
            new_parent_id = None if target is None else self.node_id(target)
            unsaved_parent = target is not None and new_parent_id is None
            if rel_history.deleted:
                old = rel_history.deleted[0]
                previous_known = True
                previous = None if old is None else self.node_id(old)

        if not changed:
            return False, new_parent_id, new_parent_id
        if not previous_known and state.has_identity:
            # Old value was never loaded; the row still holds it until flush
            previous = self.stored_parent_id(session, state.identity[0])
        return unsaved_parent or previous != new_parent_id, previous, new_parent_id

    def _expire(self, session: Session, node: Any, keys: Iterable[str] | None = None) -> None:
        state = inspect(node, raiseerr=False)
        if state is None or not state.persistent:
            return
        keys = list(keys) if keys is not None else list(state.mapper.relationships.keys())
        if keys:
            session.expire(node, keys)

    def _expire_loaded_nodes(self, session: Session, column: Column[Any]) -> None:
        """Drop cached values of a column the maintainer rewrote through Core."""
        for obj in list(session.identity_map.values()):
            state = inspect(obj)
            if state.mapper.local_table is not self.node_table or obj in session.dirty:
                continue
            session.expire(obj, [self._attr_key(obj, column)])

    # ------------------------------------------------------------------
    # Public recursive operations
    # ------------------------------------------------------------------

    def rebuild(self, session: Session, node: Any, context: MaintenanceContext | None = None) -> None:
        """Reconstruct the rows of a node and all its descendants.

        Reads the parent pointer from the node table, so pending changes must
        be flushed first. Idempotent on an unchanged tree.
        """
        node_id = self.node_id(node)
        context = context or MaintenanceContext()
        with self.lock.hold(session):
            parent_id = self.stored_parent_id(session, node_id)
            self._rebuild(session, node_id, parent_id, context, called_by_rebuild=False)
            self._after_reorder(session)
        logger.info(
            "hierarchy_rebuilt",
            table=self.hierarchy_table.name,
            node_id=node_id,
            parent_id=parent_id,
            new_record=context.was_new_record,
        )

    def _rebuild(
        self,
        session: Session,
        node_id: Any,
        parent_id: Any,
        context: MaintenanceContext,
        called_by_rebuild: bool,
    ) -> None:
        if not context.was_new_record:
            self.writer.delete_all_referencing(session, node_id)
        self.writer.insert_self(session, node_id)
        if parent_id is not None:
            self.writer.copy_ancestors_from_parent(session, node_id, parent_id)

        maintain_order = self.ordering is not None and not context.skip_sort_maintenance
        if maintain_order:
            assert self.ordering is not None
            if context.parent_changed and not context.was_new_record:
                self.ordering.reorder(session, context.previous_parent_id)
            # Children leave their group to the caller one level up
            if not called_by_rebuild:
                self.ordering.reorder(session, parent_id)

        children = self.child_ids(session, node_id)
        for child_id in children:
            self._rebuild(session, child_id, node_id, MaintenanceContext(), called_by_rebuild=True)

        if maintain_order and not context.was_new_record and children:
            assert self.ordering is not None
            self.ordering.reorder(session, node_id)

    def rebuild_forest(self, session: Session) -> int:
        """Truncate the closure table and rebuild it from every root.

        Does not read the previous contents of the table, so it also repairs
        any corruption. Returns the number of rows afterwards.
        """
        with self.lock.hold(session):
            removed = self.writer.truncate(session)
            roots = self.root_ids(session)
            if self.ordering is not None:
                self.ordering.reorder(session, None)
            for root_id in roots:
                self._rebuild(session, root_id, None, MaintenanceContext(), called_by_rebuild=True)
            self._after_reorder(session)
            rows = len(self.writer.snapshot(session))
        logger.info(
            "hierarchy_forest_rebuilt",
            table=self.hierarchy_table.name,
            roots=len(roots),
            removed=removed,
            rows=rows,
        )
        return rows

    def fast_insert_subtree(self, session: Session, root: Any) -> None:
        """Insert rows for a subtree that is entirely new.

        Skips the delete step at every level. Only valid when none of the
        subtree's nodes has rows yet and the root's ancestors are indexed.
        """
        root_id = self.node_id(root)
        with self.lock.hold(session):
            parent_id = self.stored_parent_id(session, root_id)
            count = self._fast_insert(session, root_id, parent_id)
        logger.info("hierarchy_fast_insert", table=self.hierarchy_table.name, root_id=root_id, nodes=count)

    def _fast_insert(self, session: Session, node_id: Any, parent_id: Any) -> int:
        self.writer.insert_self(session, node_id)
        if parent_id is not None:
            self.writer.copy_ancestors_from_parent(session, node_id, parent_id)
        return 1 + sum(
            self._fast_insert(session, child_id, node_id) for child_id in self.child_ids(session, node_id)
        )

    def delete_index_references(self, session: Session, node: Any) -> int:
        """Remove a node from every ancestor chain; its store row is untouched."""
        node_id = self.node_id(node)
        with self.lock.hold(session):
            removed = self.writer.delete_all_referencing(session, node_id)
        logger.info(
            "hierarchy_references_deleted",
            table=self.hierarchy_table.name,
            node_id=node_id,
            rows=removed,
        )
        return removed

    def rows(self, session: Session) -> set[HierarchyRow]:
        return self.writer.snapshot(session)

    def _after_reorder(self, session: Session) -> None:
        if self.order_column is not None:
            self._expire_loaded_nodes(session, self.order_column)

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def validate(self, session: Session, node: Any, options: MaintenanceOptions | None = None) -> None:
        """Reject a parent change that would put the node under itself.

        Only checked for a persisted node whose parent actually changed to a
        non-NULL value. Raises CycleError; the index is not touched.
        """
        options = options or MaintenanceOptions()
        if options.skip_cycle_detection:
            return
        state = inspect(node)
        if not state.has_identity:
            return
        changed, _, new_parent_id = self._pending_parent_change(session, node)
        if not changed or new_parent_id is None:
            return
        with session.no_autoflush:
            self.cycles.check(session, self.node_id(node), new_parent_id)

    def before_save(
        self,
        session: Session,
        node: Any,
        options: MaintenanceOptions | None = None,
    ) -> MaintenanceContext:
        """Capture what after_save needs before the flush erases it."""
        state = inspect(node)
        was_new_record = not state.has_identity
        changed, previous, _ = self._pending_parent_change(session, node)
        return MaintenanceContext(
            was_new_record=was_new_record,
            parent_changed=changed,
            previous_parent_id=None if was_new_record else previous,
            options=options or MaintenanceOptions(),
        )

    def after_save(self, session: Session, node: Any, context: MaintenanceContext) -> MaintenanceContext:
        """Bring the index up to date with a flushed node.

        Returns the context with its one-shot flags cleared.
        """
        if context.options.fast_insert:
            if context.options.fast_insert_root:
                self.fast_insert_subtree(session, node)
            return context.consumed()

        if context.parent_changed or context.was_new_record:
            self.rebuild(session, node, context)
        if context.parent_changed and not context.was_new_record:
            # Cached ancestor collections now describe the old position
            self._expire(session, node)
        return context.consumed()

    def before_destroy(self, session: Session, node: Any) -> None:
        """Drop the node from the index and apply the orphan policy."""
        node_id = self.node_id(node)
        with self.lock.hold(session):
            self.delete_index_references(session, node_id)
            if self.options.orphan_policy is not OrphanPolicy.NULLIFY:
                return
            children = self.child_ids(session, node_id)
            if not children:
                return
            session.execute(
                update(self.node_table)
                .where(self.parent_column == node_id)
                .values({self.parent_column.name: None})
            )
            self._expire_loaded_nodes(session, self.parent_column)
            for child_id in children:
                self._rebuild(
                    session,
                    child_id,
                    None,
                    MaintenanceContext(parent_changed=True, previous_parent_id=node_id),
                    called_by_rebuild=False,
                )
            self._after_reorder(session)
        logger.info(
            "orphans_nullified",
            table=self.node_table.name,
            node_id=node_id,
            children=len(children),
        )

    def after_destroy(self, session: Session, parent_id: Any) -> None:
        """Close the gap a destroyed node left among its siblings."""
        if self.ordering is None:
            return
        with self.lock.hold(session):
            self.ordering.reorder(session, parent_id)
            self._after_reorder(session)

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def save(
        self,
        session: Session,
        node: Any,
        options: MaintenanceOptions | None = None,
    ) -> MaintenanceContext:
        """validate -> before_save -> add + flush -> after_save, under the lock."""
        options = options or MaintenanceOptions()
        with self.lock.hold(session):
            # A flush here would erase the pending parent change
            with session.no_autoflush:
                self.validate(session, node, options)
                context = self.before_save(session, node, options)
            session.add(node)
            session.flush()
            return self.after_save(session, node, context)

    def destroy(self, session: Session, node: Any) -> None:
        """before_destroy -> delete + flush -> after_destroy, under the lock."""
        with self.lock.hold(session):
            parent_id = self.stored_parent_id(session, self.node_id(node))
            self.before_destroy(session, node)
            session.delete(node)
            session.flush()
            self.after_destroy(session, parent_id)
