"""Name logic for silos.

A silo is addressed by its branch, optionally prefixed with qualifiers taken
from its repository identity, right-aligned: ``feature``, ``app/feature``,
``orgA/app/feature``. The branch counts as a single segment even when it
contains ``/`` itself. The innermost qualifier may also be given as the
storage segment (``app-1a2b3c4d``), which is always unique.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence, Union

from .exceptions import AmbiguousError, NotFoundError
from .fs import repo_segment
from .models import RepoIdentity, Silo


@dataclass(frozen=True, slots=True)
class Unique:
    silo: Silo

    def unwrap(self) -> Silo:
        return self.silo


@dataclass(frozen=True, slots=True)
class Ambiguous:
    query: str
    candidates: tuple[Silo, ...]
    suggestions: tuple[str, ...] = field(default=())

    def unwrap(self) -> Silo:
        raise AmbiguousError(self.query, self.suggestions)


@dataclass(frozen=True, slots=True)
class NotFound:
    query: str

    def unwrap(self) -> Silo:
        raise NotFoundError(self.query)


Resolution = Union[Unique, Ambiguous, NotFound]


def _qualifiers_match(prefix: Sequence[str], identity: RepoIdentity) -> bool:
    qualifiers = identity.qualifiers
    if len(prefix) > len(qualifiers):
        return False
    *outer, innermost = prefix
    if innermost not in (identity.name, repo_segment(identity)):
        return False
    if not outer:
        return True
    expected = qualifiers[-len(prefix) : -1]
    return tuple(outer) == tuple(expected)


def matches(query: str, silo: Silo) -> bool:
    """Whether ``query`` addresses ``silo`` in right-to-left alignment."""

    if query == silo.branch:
        return True
    suffix = "/" + silo.branch
    if not query.endswith(suffix):
        return False
    prefix = query[: -len(suffix)]
    if not prefix:
        return False
    parts = prefix.split("/")
    if any(not part for part in parts):
        return False
    return _qualifiers_match(parts, silo.repository)


def candidate_labels(silo: Silo, require_repo_prefix: bool = False) -> list[str]:
    """Labels for ``silo`` from shortest to longest.

    The last label uses the storage segment and therefore names exactly one
    silo.
    """

    qualifiers = silo.repository.qualifiers
    labels = [] if require_repo_prefix else [silo.branch]
    for depth in range(1, len(qualifiers) + 1):
        labels.append("/".join((*qualifiers[-depth:], silo.branch)))
    labels.append(f"{repo_segment(silo.repository)}/{silo.branch}")
    return labels


def display_names(silos: Sequence[Silo], require_repo_prefix: bool = False) -> list[str]:
    """Shortest label for each silo that addresses no other silo in ``silos``.

    Returned in input order. Always computed from the given set; callers pass
    a fresh snapshot each time.
    """

    names: list[str] = []
    for index, silo in enumerate(silos):
        others = [other for position, other in enumerate(silos) if position != index]
        labels = candidate_labels(silo, require_repo_prefix)
        chosen = labels[-1]
        for label in labels:
            if not any(matches(label, other) for other in others):
                chosen = label
                break
        names.append(chosen)
    return names


def display_name(silo: Silo, silos: Sequence[Silo], require_repo_prefix: bool = False) -> str:
    for candidate, name in zip(silos, display_names(silos, require_repo_prefix)):
        if candidate == silo:
            return name
    return display_names([*silos, silo], require_repo_prefix)[-1]


def _well_formed(query: str) -> bool:
    if not query or query.startswith("/") or query.endswith("/"):
        return False
    return "//" not in query


def resolve(query: str, silos: Sequence[Silo], prefer: RepoIdentity | None = None) -> Resolution:
    """Resolve ``query`` against ``silos``.

    With ``prefer`` set, a single match inside that repository wins over
    matches elsewhere.
    """

    query = query.strip()
    if not _well_formed(query):
        return NotFound(query)
    found = [silo for silo in silos if matches(query, silo)]
    if not found:
        return NotFound(query)
    if len(found) == 1:
        return Unique(found[0])
    if prefer is not None:
        local = [silo for silo in found if silo.repository == prefer]
        if len(local) == 1:
            return Unique(local[0])
    names = display_names(silos)
    suggestions = tuple(name for silo, name in zip(silos, names) if silo in found)
    ordered = tuple(silo for silo in silos if silo in found)
    return Ambiguous(query=query, candidates=ordered, suggestions=suggestions)


__all__ = [
    "Unique",
    "Ambiguous",
    "NotFound",
    "Resolution",
    "matches",
    "candidate_labels",
    "display_names",
    "display_name",
    "resolve",
]
