"""Concurrent maintenance from several threads, each with its own session."""

from __future__ import annotations

import threading

from tests.hierarchy.models import Category, sibling_orders
from treeindex.hierarchy import Database, HierarchyIntegrityChecker, TreeMaintainer

THREADS = 4
PER_THREAD = 5


def _run(workers: list[threading.Thread]) -> None:
    for t in workers:
        t.start()
    for t in workers:
        t.join(30)
        assert not t.is_alive()


class TestConcurrentMaintenance:
    def test_concurrent_inserts_under_one_parent(self, db: Database, tree: TreeMaintainer) -> None:
        with db.session() as s:
            root = Category(name="root")
            tree.save(s, root)
            s.commit()
            root_id = root.id

        errors: list[BaseException] = []

        def insert_many(n: int) -> None:
            try:
                for i in range(PER_THREAD):
                    with db.session() as s, tree.advisory_lock(s):
                        tree.save(s, Category(name=f"t{n}-{i}", parent_id=root_id))
                        s.commit()
            except BaseException as e:  # surfaced by the assertion below
                errors.append(e)

        _run([threading.Thread(target=insert_many, args=(n,)) for n in range(THREADS)])

        assert errors == []
        with db.session() as s:
            report = HierarchyIntegrityChecker(tree).verify(s)
            orders = [order for _, order in sibling_orders(s, root_id)]

        assert report.passed
        assert report.nodes_checked == 1 + THREADS * PER_THREAD
        assert orders == list(range(THREADS * PER_THREAD))

    def test_concurrent_moves(self, db: Database, tree: TreeMaintainer) -> None:
        with db.session() as s:
            left = Category(name="left")
            right = Category(name="right")
            tree.save(s, left)
            tree.save(s, right)
            leaves = [Category(name=f"leaf{n}", parent_id=left.id) for n in range(THREADS)]
            for leaf in leaves:
                tree.save(s, leaf)
            s.commit()
            sides = (left.id, right.id)
            leaf_ids = [leaf.id for leaf in leaves]

        errors: list[BaseException] = []

        def shuttle(leaf_id: int) -> None:
            try:
                for i in range(PER_THREAD):
                    with db.session() as s, tree.advisory_lock(s):
                        leaf = s.get(Category, leaf_id)
                        assert leaf is not None
                        leaf.parent_id = sides[(i + 1) % 2]
                        tree.save(s, leaf)
                        s.commit()
            except BaseException as e:  # surfaced by the assertion below
                errors.append(e)

        _run([threading.Thread(target=shuttle, args=(leaf_id,)) for leaf_id in leaf_ids])

        assert errors == []
        with db.session() as s:
            report = HierarchyIntegrityChecker(tree).verify(s)
            right_orders = [order for _, order in sibling_orders(s, sides[1])]

        assert report.passed
        # PER_THREAD is odd, so every leaf ends on the right
        assert right_orders == list(range(THREADS))
