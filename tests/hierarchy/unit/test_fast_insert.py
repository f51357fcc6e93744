"""Tests for fast insert of freshly created subtrees."""

from __future__ import annotations

import pytest
from sqlmodel import Session

from tests.hierarchy.models import Category, NodeFactory, parent_map, triples
from treeindex.core.errors import ConstraintViolation
from treeindex.hierarchy import MaintenanceContext, MaintenanceOptions, TreeMaintainer
from treeindex.hierarchy._internal.db import expected_closure


def _new_subtree(parent_id: int | None) -> list[Category]:
    """top(10) -> mid(11) -> low(12), plus side(13) under top."""
    return [
        Category(id=10, name="top", parent_id=parent_id),
        Category(id=11, name="mid", parent_id=10),
        Category(id=12, name="low", parent_id=11),
        Category(id=13, name="side", parent_id=10),
    ]


class TestFastInsertSubtree:
    def test_new_subtree_under_indexed_parent(
        self, session: Session, tree: TreeMaintainer, make_node: NodeFactory
    ) -> None:
        r = make_node("R", id=1)
        session.add_all(_new_subtree(r.id))
        session.flush()

        tree.fast_insert_subtree(session, 10)

        expected, _, _ = expected_closure(parent_map(session))
        assert tree.rows(session) == expected
        assert (1, 12, 3) in triples(tree.rows(session))

    def test_new_root_subtree(self, session: Session, tree: TreeMaintainer) -> None:
        session.add_all(_new_subtree(None))
        session.flush()

        tree.fast_insert_subtree(session, 10)

        assert triples(tree.rows(session)) == {
            (10, 10, 0),
            (11, 11, 0),
            (12, 12, 0),
            (13, 13, 0),
            (10, 11, 1),
            (10, 12, 2),
            (11, 12, 1),
            (10, 13, 1),
        }

    def test_already_indexed_node_is_a_constraint_violation(
        self, session: Session, tree: TreeMaintainer, make_node: NodeFactory
    ) -> None:
        r = make_node("R")
        r_id = r.id

        with pytest.raises(ConstraintViolation) as exc_info:
            tree.fast_insert_subtree(session, r_id)

        assert exc_info.value.details["node_id"] == r_id
        assert not tree.lock.is_held()


class TestFastInsertHooks:
    """Fast insert driven through before_save/after_save for a whole batch."""

    def test_only_root_after_save_writes_rows(
        self, session: Session, tree: TreeMaintainer, make_node: NodeFactory
    ) -> None:
        r = make_node("R", id=1)
        nodes = _new_subtree(r.id)
        contexts = [tree.before_save(session, nodes[0], MaintenanceOptions(fast_insert=True))]
        contexts += [tree.before_save(session, n, MaintenanceOptions.fast_insert_member()) for n in nodes[1:]]
        session.add_all(nodes)
        session.flush()

        before = tree.rows(session)
        for node, context in zip(nodes[1:], contexts[1:], strict=True):
            tree.after_save(session, node, context)
        assert tree.rows(session) == before

        consumed = tree.after_save(session, nodes[0], contexts[0])

        expected, _, _ = expected_closure(parent_map(session))
        assert tree.rows(session) == expected
        assert consumed.was_new_record is False

    def test_member_options(self) -> None:
        options = MaintenanceOptions.fast_insert_member()
        assert options.fast_insert is True
        assert options.fast_insert_root is False
        assert MaintenanceContext(options=options).consumed().options.fast_insert is True
