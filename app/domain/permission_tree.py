"""Dotted permission codes as a selectable tree.

Codes such as ``system.role.edit`` describe a path.  ``build_tree`` turns a flat
catalog into folder/file nodes under a single synthetic root, ``toggle`` applies
one selection change and ``extract_checked`` folds the tree back into the flat
id set that gets persisted as a grant list.

Trees are treated as immutable values: ``toggle`` returns a new tree and leaves
the input untouched, so a caller can keep the previous value around (undo,
comparisons in tests).
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from enum import StrEnum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

ROOT_NODE_ID = "#root"
PATH_SEPARATOR = "."

_INNER_CAPITAL = re.compile(r"(?<!^)([A-Z])")


class NodeKind(StrEnum):
    FOLDER = "folder"
    FILE = "file"


class TreeNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: NodeKind
    checked: bool = False
    children: list[TreeNode] = Field(default_factory=list)


class CatalogItem(Protocol):
    id: str
    code: str
    name: str


class NodeNotFoundError(KeyError):
    pass


def humanize_segment(segment: str) -> str:
    """``integrationInbound`` -> ``Integration Inbound``; every inner capital starts a word."""
    spaced = _INNER_CAPITAL.sub(r" \1", segment)
    return spaced[:1].upper() + spaced[1:]


def build_tree(
    catalog: Iterable[CatalogItem],
    checked_ids: Iterable[str] = (),
    *,
    root_name: str = "Permissions",
) -> list[TreeNode]:
    """Build the selection tree for ``catalog``.

    Entries are processed in code order, so a prefix is always seen before any
    code extending it.  Nodes live in an arena keyed by the path consumed so
    far; a path with no catalog entry becomes a synthetic folder whose id is
    the path itself.  The result is always a one-element list holding the root.
    """
    entries = sorted(catalog, key=lambda item: (item.code, item.id))
    by_code: dict[str, CatalogItem] = {}
    for entry in entries:
        if entry.code in by_code:
            raise ValueError(f"duplicate code in catalog: {entry.code}")
        by_code[entry.code] = entry
    checked = set(checked_ids)

    nodes: dict[str, TreeNode] = {}
    top_level: list[TreeNode] = []
    for entry in entries:
        segments = entry.code.split(PATH_SEPARATOR)
        parent: TreeNode | None = None
        path = ""
        for index, segment in enumerate(segments):
            path = segment if index == 0 else f"{path}{PATH_SEPARATOR}{segment}"
            node = nodes.get(path)
            if node is None:
                backing = by_code.get(path)
                node = TreeNode(
                    id=backing.id if backing is not None else path,
                    name=backing.name if backing is not None and backing.name else humanize_segment(segment),
                    kind=NodeKind.FILE if index == len(segments) - 1 else NodeKind.FOLDER,
                    checked=backing is not None and backing.id in checked,
                )
                nodes[path] = node
                siblings = top_level if parent is None else parent.children
                if all(item.id != node.id for item in siblings):
                    siblings.append(node)
            parent = node

    root = TreeNode(
        id=ROOT_NODE_ID,
        name=root_name,
        kind=NodeKind.FOLDER,
        checked=False,
        children=top_level,
    )
    return [root]


def iter_nodes(tree: Iterable[TreeNode]) -> Iterator[TreeNode]:
    for node in tree:
        yield node
        yield from iter_nodes(node.children)


def find_node(tree: Iterable[TreeNode], node_id: str) -> TreeNode:
    for node in iter_nodes(tree):
        if node.id == node_id:
            return node
    raise NodeNotFoundError(node_id)


def _force(node: TreeNode, checked: bool) -> TreeNode:
    return node.model_copy(
        update={
            "checked": checked,
            "children": [_force(child, checked) for child in node.children],
        }
    )


def toggle(tree: list[TreeNode], node_id: str, checked: bool) -> list[TreeNode]:
    """Return a copy of ``tree`` with ``node_id`` set to ``checked``.

    A folder pushes the value onto every descendant.  A file changes only
    itself.  Ancestors are never recomputed from their children.
    """
    found = False

    def _visit(node: TreeNode) -> TreeNode:
        nonlocal found
        if node.id == node_id:
            found = True
            if node.kind is NodeKind.FOLDER:
                return _force(node, checked)
            return node.model_copy(update={"checked": checked})
        if not node.children:
            return node
        return node.model_copy(update={"children": [_visit(child) for child in node.children]})

    updated = [_visit(node) for node in tree]
    if not found:
        raise NodeNotFoundError(node_id)
    return updated


def extract_checked(tree: Iterable[TreeNode]) -> set[str]:
    """Ids of checked file nodes; folders never contribute."""
    return {node.id for node in iter_nodes(tree) if node.checked and node.kind is NodeKind.FILE}


def reconcile_ids(catalog: Iterable[CatalogItem], ids: Iterable[str]) -> set[str]:
    """Keep only the ids that still name an entry of ``catalog``."""
    return extract_checked(build_tree(catalog, ids))
