"""Tests for the node table maintenance indexes."""

from __future__ import annotations

from sqlalchemy import inspect

from treeindex.hierarchy import Database, TreeMaintainer, create_additional_indexes
from treeindex.hierarchy._internal.db import additional_indexes, drop_additional_indexes


def _index_names(db: Database) -> set[str]:
    return {ix["name"] for ix in inspect(db.engine).get_indexes("category")}


class TestAdditionalIndexes:
    def test_names_without_order_column(self, plain_tree: TreeMaintainer) -> None:
        assert additional_indexes(plain_tree) == {"idx_category_parent_id": ["parent_id"]}

    def test_names_with_order_column(self, tree: TreeMaintainer) -> None:
        assert additional_indexes(tree) == {
            "idx_category_parent_id": ["parent_id"],
            "idx_category_parent_id_sort_order": ["parent_id", "sort_order"],
        }

    def test_create_and_drop(self, db: Database, tree: TreeMaintainer) -> None:
        created = create_additional_indexes(db.engine, tree)

        assert set(created) == {"idx_category_parent_id", "idx_category_parent_id_sort_order"}
        assert set(created) <= _index_names(db)

        drop_additional_indexes(db.engine, tree)
        assert not set(created) & _index_names(db)

    def test_covered_index_skipped(self, db: Database, tree: TreeMaintainer) -> None:
        create_additional_indexes(db.engine, tree)
        assert create_additional_indexes(db.engine, tree) == []

    def test_composite_covers_parent_only(self, db: Database, tree: TreeMaintainer, plain_tree: TreeMaintainer) -> None:
        create_additional_indexes(db.engine, tree)
        assert create_additional_indexes(db.engine, plain_tree) == []
