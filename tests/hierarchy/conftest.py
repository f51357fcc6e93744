"""Shared fixtures for hierarchy tests."""

from __future__ import annotations

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from sqlmodel import Session

from tests.hierarchy.models import Category, NodeFactory
from treeindex.hierarchy import Database, MaintenanceOptions, TreeMaintainer, TreeOptions


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database with the category and closure tables."""
    database = Database(temp_dir / "tree.db")
    database.create_all()
    yield database
    database.engine.dispose()


@pytest.fixture
def session(db: Database) -> Generator[Session, None, None]:
    with db.session() as s:
        yield s


@pytest.fixture
def tree() -> TreeMaintainer:
    """Maintainer with sibling sort-order maintenance on sort_order."""
    return TreeMaintainer.for_model(Category, TreeOptions(order_column="sort_order"))


@pytest.fixture
def plain_tree() -> TreeMaintainer:
    """Maintainer without sort-order maintenance."""
    return TreeMaintainer.for_model(Category)


@pytest.fixture
def make_node(session: Session, tree: TreeMaintainer) -> NodeFactory:
    """Save a category through the maintenance pipeline."""

    def _make(
        name: str,
        parent: Category | None = None,
        *,
        id: int | None = None,
        sort_order: int | None = None,
        options: MaintenanceOptions | None = None,
    ) -> Category:
        node = Category(
            id=id,
            name=name,
            parent_id=parent.id if parent is not None else None,
            sort_order=sort_order,
        )
        tree.save(session, node, options)
        return node

    return _make
