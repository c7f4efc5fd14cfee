"""Compact tree notation for building seeds."""

from __future__ import annotations

from typing import Any


def uncompress_tree(tree: list[Any], path: list[Any] | None = None) -> list[list[Any]]:
    """Expand a nested list into the list of its root-to-leaf paths.

    The leading non-list items of ``tree`` form a node; each list after them
    is a subtree hanging off that node.

    Example::

        uncompress_tree(["a", "b", ["c", ["d"], ["e"]], ["f"]])
        # => [["a", "b", "c", "d"], ["a", "b", "c", "e"], ["a", "b", "f"]]
    """
    path = list(path or [])
    split = next(
        (i for i, item in enumerate(tree) if isinstance(item, list)), len(tree)
    )
    path.extend(tree[:split])
    subtrees = tree[split:]
    if not subtrees:
        return [path]
    paths: list[list[Any]] = []
    for subtree in subtrees:
        if not isinstance(subtree, list):
            raise ValueError(
                f"Node items must precede subtrees, got {subtree!r} after a subtree"
            )
        paths.extend(uncompress_tree(subtree, path))
    return paths
