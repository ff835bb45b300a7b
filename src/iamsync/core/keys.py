"""
Key deriver: Identity -> stable, run-unique user key.

Default transform (``first_initial_last_name``):
  - NFKD normalisation, combining accents dropped
  - lowercase
  - characters outside [a-z0-9] stripped from each name part
  - first character of the first name + the whole last name
  "Michael Scott" -> "mscott", "Zoë O'Brien" -> "zobrien"

Collisions are resolved in input order by appending the smallest unused
integer suffix starting at 2: jhalpert, jhalpert2, jhalpert3, ...
"""

from __future__ import annotations

import importlib
import logging
import re
import unicodedata
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from .errors import EmptyDerivedKey, KeyDerivationError
from .models import Identity, KeyedIdentity

log = logging.getLogger(__name__)

KeyTransform = Callable[[Identity], str]


def slug(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    ascii_only = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9]", "", ascii_only.lower())


def first_initial_last_name(identity: Identity) -> str:
    first = slug(identity.first_name)
    return first[:1] + slug(identity.last_name)


def first_dot_last(identity: Identity) -> str:
    parts = [p for p in (slug(identity.first_name), slug(identity.last_name)) if p]
    return ".".join(parts)


TRANSFORM_REGISTRY: Dict[str, KeyTransform] = {
    "first_initial_last_name": first_initial_last_name,
    "first_dot_last": first_dot_last,
}

DEFAULT_TRANSFORM = "first_initial_last_name"


def resolve_transform(ref: Union[str, KeyTransform, None]) -> KeyTransform:
    """Accept a callable, a registry name, or a 'module:function' reference."""
    if ref is None or ref == "":
        return TRANSFORM_REGISTRY[DEFAULT_TRANSFORM]
    if callable(ref):
        return ref
    if ref in TRANSFORM_REGISTRY:
        return TRANSFORM_REGISTRY[ref]
    if ":" in ref:
        mod, func = ref.split(":", 1)
        try:
            module = importlib.import_module(mod)
            fn = getattr(module, func)
        except (ImportError, AttributeError) as e:
            raise KeyDerivationError(f"Cannot import key transform '{ref}': {e}") from e
        if not callable(fn):
            raise KeyDerivationError(f"Key transform '{ref}' is not callable")
        return fn
    raise KeyDerivationError(f"Unknown key transform '{ref}'")


class KeyAllocator:
    """Hands out unique keys within one run."""

    def __init__(self) -> None:
        self._taken: Set[str] = set()

    def allocate(self, candidate: str) -> str:
        if candidate not in self._taken:
            self._taken.add(candidate)
            return candidate
        n = 2
        while f"{candidate}{n}" in self._taken:
            n += 1
        key = f"{candidate}{n}"
        self._taken.add(key)
        return key


def derive_keys(
    identities: Iterable[Identity],
    transform: Optional[Union[str, KeyTransform]] = None,
) -> Tuple[List[KeyedIdentity], List[EmptyDerivedKey]]:
    """Assign one unique key per identity, in input order.

    Identities whose transform yields "" are rejected with EmptyDerivedKey.
    """
    fn = resolve_transform(transform)
    allocator = KeyAllocator()
    keyed: List[KeyedIdentity] = []
    rejected: List[EmptyDerivedKey] = []

    for identity in identities:
        candidate = fn(identity)
        if not isinstance(candidate, str):
            raise KeyDerivationError(
                f"Key transform returned {type(candidate).__name__}, expected str"
            )
        candidate = candidate.strip()
        if not candidate:
            err = EmptyDerivedKey(identity.index, identity.display_name)
            log.warning("Identity rejected: %s", err)
            rejected.append(err)
            continue
        key = allocator.allocate(candidate)
        if key != candidate:
            log.info("Key collision on '%s' (row %d): assigned '%s'", candidate, identity.index, key)
        keyed.append(KeyedIdentity(identity=identity, key=key))

    return keyed, rejected
