"""Closure table integrity verification and recovery.

The parent column is the source of truth. Integrity checks:
1. Parent pointers that form a cycle or point at a missing node
2. Nodes without their generations=0 self row
3. Rows the parent column implies but the table lacks
4. Rows the table holds but the parent column doesn't imply (stale or corrupt)

Recovery strategy: rebuild_forest(), which ignores the table's prior contents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select

from treeindex.hierarchy.models import HierarchyRow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from treeindex.hierarchy.maintainer import TreeMaintainer

logger = structlog.get_logger()

MAX_EXAMPLES = 10


@dataclass
class IntegrityIssue:
    """A single integrity issue detected."""

    category: str  # 'missing_row', 'extra_row', 'missing_self_row', 'parent_cycle', 'dangling_parent'
    table: str | None
    message: str
    count: int = 1
    examples: list[Any] = field(default_factory=list)


@dataclass
class IntegrityReport:
    """Result of integrity verification."""

    passed: bool
    issues: list[IntegrityIssue] = field(default_factory=list)
    nodes_checked: int = 0
    rows_checked: int = 0
    rows_expected: int = 0

    def add_issue(self, issue: IntegrityIssue) -> None:
        """Add an issue and mark as failed."""
        self.issues.append(issue)
        self.passed = False

    def by_category(self, category: str) -> IntegrityIssue | None:
        return next((i for i in self.issues if i.category == category), None)


def expected_closure(parents: dict[Any, Any]) -> tuple[set[HierarchyRow], set[Any], set[Any]]:
    """Closure implied by a node -> parent map.

    Returns (rows, cyclic node ids, dangling node ids). Only nodes that reach
    a root contribute rows; a node under a cycle or under a missing parent
    is unreachable and reported instead.
    """
    rows: set[HierarchyRow] = set()
    cyclic: set[Any] = set()
    dangling: set[Any] = set()

    for node_id in parents:
        chain = [node_id]
        seen = {node_id}
        current = parents[node_id]
        reachable = True
        while current is not None:
            if current not in parents:
                dangling.add(node_id)
                reachable = False
                break
            if current in seen:
                cyclic.add(node_id)
                reachable = False
                break
            seen.add(current)
            chain.append(current)
            current = parents[current]
        if not reachable:
            continue
        rows.update(HierarchyRow(ancestor, node_id, depth) for depth, ancestor in enumerate(chain))

    return rows, cyclic, dangling


class HierarchyIntegrityChecker:
    """Verifies a closure table against the parent column of its node table.

    Usage::

        checker = HierarchyIntegrityChecker(tree)
        report = checker.verify(session)

        if not report.passed:
            HierarchyRecovery(tree).repair(session)
    """

    def __init__(self, tree: TreeMaintainer) -> None:
        self._tree = tree

    def verify(self, session: Session) -> IntegrityReport:
        """Run all integrity checks and return report."""
        tree = self._tree
        table = tree.hierarchy_table.name
        report = IntegrityReport(passed=True)

        parents = dict(session.execute(select(tree.id_column, tree.parent_column)).all())
        actual = tree.rows(session)
        expected, cyclic, dangling = expected_closure(parents)

        report.nodes_checked = len(parents)
        report.rows_checked = len(actual)
        report.rows_expected = len(expected)

        self._check_parents(report, cyclic, dangling)

        unreachable = cyclic | dangling
        missing = expected - actual
        missing_self = sorted((r for r in missing if r.generations == 0), key=_row_key)
        missing_other = sorted((r for r in missing if r.generations > 0), key=_row_key)
        extra = sorted(
            (r for r in actual - expected if r.descendant_id not in unreachable),
            key=_row_key,
        )

        if missing_self:
            report.add_issue(
                IntegrityIssue(
                    category="missing_self_row",
                    table=table,
                    message="nodes without a generations=0 self row",
                    count=len(missing_self),
                    examples=missing_self[:MAX_EXAMPLES],
                )
            )
        if missing_other:
            report.add_issue(
                IntegrityIssue(
                    category="missing_row",
                    table=table,
                    message="ancestor rows implied by the parent column are absent",
                    count=len(missing_other),
                    examples=missing_other[:MAX_EXAMPLES],
                )
            )
        if extra:
            report.add_issue(
                IntegrityIssue(
                    category="extra_row",
                    table=table,
                    message="rows not implied by the parent column",
                    count=len(extra),
                    examples=extra[:MAX_EXAMPLES],
                )
            )

        if not report.passed:
            logger.warning(
                "hierarchy_integrity_failed",
                table=table,
                issues={i.category: i.count for i in report.issues},
            )
        return report

    def _check_parents(self, report: IntegrityReport, cyclic: set[Any], dangling: set[Any]) -> None:
        node_table = self._tree.node_table.name
        if cyclic:
            report.add_issue(
                IntegrityIssue(
                    category="parent_cycle",
                    table=node_table,
                    message="nodes whose parent chain loops back on itself",
                    count=len(cyclic),
                    examples=sorted(cyclic, key=str)[:MAX_EXAMPLES],
                )
            )
        if dangling:
            report.add_issue(
                IntegrityIssue(
                    category="dangling_parent",
                    table=node_table,
                    message="nodes whose parent chain points at a missing node",
                    count=len(dangling),
                    examples=sorted(dangling, key=str)[:MAX_EXAMPLES],
                )
            )


def _row_key(row: HierarchyRow) -> tuple[str, str, int]:
    return (str(row.descendant_id), str(row.ancestor_id), row.generations)


class HierarchyRecovery:
    """Recovery for a corrupt closure table.

    Usage::

        report = HierarchyRecovery(tree).repair(session)
    """

    def __init__(self, tree: TreeMaintainer) -> None:
        self._tree = tree

    def repair(self, session: Session) -> IntegrityReport:
        """Rebuild the whole forest, then verify the result."""
        self._tree.rebuild_forest(session)
        return HierarchyIntegrityChecker(self._tree).verify(session)


__all__ = [
    "HierarchyIntegrityChecker",
    "HierarchyRecovery",
    "IntegrityIssue",
    "IntegrityReport",
    "expected_closure",
]
