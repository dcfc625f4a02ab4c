"""
Field-set expressions in the vendor "fields" syntax.

    id,name,placement(id,status),jobOrder(id,clientCorporation(id,name))

`parse_fields` turns one or many expressions into a tree where leaves are
`None` and nested selections are dicts. `project` walks an ORM object along
that tree and returns plain JSON-friendly data.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional, Union

FieldTree = dict[str, Optional["FieldTree"]]


def _split_top_level(expr: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    buf: list[str] = []
    for ch in expr:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise ValueError(f"Unbalanced ')' in field expression: {expr!r}")
        if ch == "," and depth == 0:
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    if depth != 0:
        raise ValueError(f"Unbalanced '(' in field expression: {expr!r}")
    parts.append("".join(buf))
    return [p.strip() for p in parts if p.strip()]


def _merge(into: FieldTree, other: FieldTree) -> FieldTree:
    for key, sub in other.items():
        cur = into.get(key)
        if sub is None:
            into.setdefault(key, None)
        elif cur is None:
            into[key] = dict(sub)
        else:
            _merge(cur, sub)
    return into


def _parse_one(expr: str) -> FieldTree:
    tree: FieldTree = {}
    for part in _split_top_level(expr):
        if "(" in part:
            if not part.endswith(")"):
                raise ValueError(f"Malformed field expression: {part!r}")
            name, inner = part.split("(", 1)
            name = name.strip()
            if not name:
                raise ValueError(f"Missing relation name in: {part!r}")
            sub = _parse_one(inner[:-1])
            _merge(tree, {name: sub})
        else:
            _merge(tree, {part: None})
    return tree


def parse_fields(exprs: Union[str, Iterable[str]]) -> FieldTree:
    if isinstance(exprs, str):
        exprs = [exprs]
    tree: FieldTree = {}
    for expr in exprs:
        _merge(tree, _parse_one(str(expr or "")))
    return tree


def _project_value(value: Any, sub: Optional[FieldTree]) -> Any:
    if sub is None or value is None:
        return value
    if isinstance(value, (list, tuple, set)):
        return [project(v, sub) for v in value]
    return project(value, sub)


def project(obj: Any, tree: FieldTree) -> Optional[dict[str, Any]]:
    if obj is None:
        return None
    out: dict[str, Any] = {}
    for key in sorted(tree):
        out[key] = _project_value(getattr(obj, key, None), tree[key])
    return out
