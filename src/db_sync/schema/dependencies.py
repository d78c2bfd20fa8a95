"""Foreign-key dependency ordering for tables.

Orders tables parents-first so creates and loads never reference a table
that does not exist yet; reversing the order gives a safe drop/truncate
order.  The sort is deterministic: among tables that are ready, the
lexicographically smallest is placed first.

Cycles are broken by dropping the edge with the lexicographically largest
``(table, fk_name)`` pair among the edges that lie on a cycle; references
from outside a cycle into it are never dropped.  Self-referencing foreign keys never
affect the order but are reported, since loading such a table row by row can
still violate its own constraint.

Usage:
    from db_sync.schema.dependencies import resolve_order

    ordering = resolve_order(schema.tables)
    ordering.order            # ['customers', 'orders']
    ordering.reverse_order    # ['orders', 'customers']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from db_sync import errors
from db_sync.schema.models import Table

logger = logging.getLogger(__name__)


@dataclass
class DependencyOrder:
    """Result of ordering a set of tables by FK references.

    Attributes:
        order: Parent tables first.
        broken_edges: ``(table, fk_name, referenced_table)`` edges removed to
            break cycles, in the order they were removed.
        self_references: Tables with a foreign key to themselves, sorted.
    """

    order: list[str] = field(default_factory=list)
    broken_edges: list[tuple[str, str, str]] = field(default_factory=list)
    self_references: list[str] = field(default_factory=list)

    @property
    def reverse_order(self) -> list[str]:
        return list(reversed(self.order))

    @property
    def has_cycles(self) -> bool:
        """True if any cycle was broken or any table references itself."""
        return bool(self.broken_edges or self.self_references)


def build_dependency_graph(tables: list[Table]) -> dict[tuple[str, str], str]:
    """Map ``(table, fk_name)`` to the referenced table.

    Only references between tables in ``tables`` are kept; self-references
    are excluded.
    """
    names = {t.name for t in tables}
    edges: dict[tuple[str, str], str] = {}
    for table in tables:
        for fk in table.foreign_keys:
            ref = fk.referenced_table
            if ref != table.name and ref in names:
                edges[(table.name, fk.name)] = ref
    return edges


def _components(
    nodes: set[str], edges: dict[tuple[str, str], str]
) -> dict[str, int]:
    """Label each node with its strongly connected component (Kosaraju)."""
    forward: dict[str, list[str]] = {n: [] for n in nodes}
    backward: dict[str, list[str]] = {n: [] for n in nodes}
    for (child, _), parent in edges.items():
        if child in nodes and parent in nodes:
            forward[child].append(parent)
            backward[parent].append(child)

    finished: list[str] = []
    visited: set[str] = set()
    for start in sorted(nodes):
        if start in visited:
            continue
        visited.add(start)
        stack = [(start, iter(forward[start]))]
        while stack:
            node, successors = stack[-1]
            for succ in successors:
                if succ not in visited:
                    visited.add(succ)
                    stack.append((succ, iter(forward[succ])))
                    break
            else:
                stack.pop()
                finished.append(node)

    labels: dict[str, int] = {}
    for label, root in enumerate(reversed(finished)):
        if root in labels:
            continue
        labels[root] = label
        pending = [root]
        while pending:
            node = pending.pop()
            for pred in backward[node]:
                if pred not in labels:
                    labels[pred] = label
                    pending.append(pred)
    return labels


def resolve_order(tables: list[Table], strict: bool = False) -> DependencyOrder:
    """Order tables parents-first, breaking cycles deterministically.

    Args:
        tables: Tables to order.  References to tables outside this list
            are ignored.
        strict: Raise instead of returning a best-effort order when a cycle
            had to be broken.

    Returns:
        ``DependencyOrder`` covering every table exactly once.

    Raises:
        DependencyCycleError: If ``strict`` and the graph has a cycle.  The
            error carries the best-effort order.

    Example:
        >>> from db_sync.schema.models import ForeignKey, Table
        >>> orders = Table(name="orders", foreign_keys=[ForeignKey(
        ...     name="fk", columns=["c"], referenced_table="customers",
        ...     referenced_columns=["id"])])
        >>> resolve_order([orders, Table(name="customers")]).order
        ['customers', 'orders']
    """
    edges = build_dependency_graph(tables)
    self_references = sorted(
        {
            t.name
            for t in tables
            for fk in t.foreign_keys
            if fk.referenced_table == t.name
        }
    )

    remaining = {t.name for t in tables}
    result = DependencyOrder(self_references=self_references)

    while remaining:
        # A table is ready once no active edge points from it to an unplaced table
        blocked = {
            child for (child, _), parent in edges.items()
            if child in remaining and parent in remaining
        }
        ready = sorted(remaining - blocked)
        if ready:
            table = ready[0]
            result.order.append(table)
            remaining.discard(table)
            continue

        # Only edges inside a strongly connected component lie on a cycle
        component = _components(remaining, edges)
        candidates = [
            key for key, parent in edges.items()
            if key[0] in remaining and parent in remaining
            and component[key[0]] == component[parent]
        ]
        broken = max(candidates)
        parent = edges.pop(broken)
        result.broken_edges.append((broken[0], broken[1], parent))
        logger.warning(
            "Foreign key cycle: ignoring %s.%s -> %s for ordering",
            broken[0], broken[1], parent,
        )

    if strict and result.broken_edges:
        raise errors.DependencyCycleError(
            result.order, result.broken_edges, result.self_references
        )
    return result
