"""Compare filesystem paths by whole segments."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


class PathRelation(str, Enum):
    EQUAL = "equal"
    ANCESTOR_OF = "ancestor_of"
    UNRELATED = "unrelated"


def _segments(path: PathLike) -> list[str]:
    normalized = os.path.normcase(os.path.abspath(os.fspath(path)))
    drive, rest = os.path.splitdrive(normalized)
    parts = [part for part in rest.split(os.sep) if part]
    return [drive, *parts]


def path_relation(a: PathLike, b: PathLike) -> PathRelation:
    """Describe how `a` relates to `b`.

    Args:
        a: Candidate parent path.
        b: Path being compared against.

    Returns:
        `EQUAL` when both normalize to the same path, `ANCESTOR_OF` when `a`
        contains `b`, otherwise `UNRELATED`. A path that merely shares a
        string prefix (`/proj` vs `/project`) is unrelated.
    """
    a_parts = _segments(a)
    b_parts = _segments(b)
    if a_parts == b_parts:
        return PathRelation.EQUAL
    if len(a_parts) < len(b_parts) and b_parts[: len(a_parts)] == a_parts:
        return PathRelation.ANCESTOR_OF
    return PathRelation.UNRELATED


def is_path_equal(a: PathLike, b: PathLike) -> bool:
    return path_relation(a, b) is PathRelation.EQUAL


def is_subpath(parent: PathLike, child: PathLike) -> bool:
    return path_relation(parent, child) is PathRelation.ANCESTOR_OF


def is_same_or_ancestor(parent: PathLike, child: PathLike) -> bool:
    return path_relation(parent, child) is not PathRelation.UNRELATED
