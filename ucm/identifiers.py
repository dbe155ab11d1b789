"""
Identifier Allocator
====================

Derives stable, collision-free identifiers:

- Use cases:  UC-<TOKEN>-<NNN>   e.g. "Security" -> UC-SEC-001
- Scenarios:  <use case id>-S<NN> e.g. UC-SEC-001-S01

Numbers are the smallest unused sequence number >= 1, so a slot freed by a
deletion is reused before the sequence grows. When the fixed-width field is
exhausted, CapacityExceededError is raised instead of wrapping.

Two categories can collapse onto the same 3-letter token ("Security" and
"Secrets" both give SEC). How that is resolved is a project setting:

- category_tokens: explicit registry, always wins
- "extend" strategy: try a longer prefix (SECR), then a digit suffix (SEC2)
- "strict" strategy: raise TokenCollisionError unless the registry resolves it
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Iterable, Mapping

from ucm.errors import CapacityExceededError, NotFoundError, TokenCollisionError
from ucm.models import SCENARIO, USE_CASE

if TYPE_CHECKING:
    from ucm.repository import Repository

_logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_PREFIX = "UC"

# Width of the numeric field of use case ids (UC-SEC-001)
SEQUENCE_WIDTH = 3

# Width of the numeric field of scenario ids (UC-SEC-001-S01)
SCENARIO_SEQUENCE_WIDTH = 2

# Base token length derived from the category name
TOKEN_LENGTH = 3

# Longer prefixes tried by the "extend" strategy before digit suffixes
EXTENDED_TOKEN_LENGTHS = (4, 5, 6)

FALLBACK_TOKEN = "GEN"

TOKEN_STRATEGIES = ("extend", "strict")

USE_CASE_ID_PATTERN = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<token>[A-Z0-9]+)-(?P<number>\d+)$")
SCENARIO_ID_PATTERN = re.compile(r"^(?P<use_case_id>.+)-S(?P<number>\d+)$")


# =============================================================================
# Helpers
# =============================================================================

def category_key(category: str) -> str:
    """Case-insensitive comparison key for category names."""
    return " ".join(category.split()).lower()


def _category_chars(category: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", category.upper())


def derive_token(category: str, length: int = TOKEN_LENGTH) -> str:
    """
    Derive the abbreviation token of a category.

    Example:
        >>> derive_token("Security")
        'SEC'
        >>> derive_token("api")
        'API'
    """
    chars = _category_chars(category)
    if not chars:
        return FALLBACK_TOKEN
    return chars[:length]


def parse_use_case_id(use_case_id: str) -> tuple[str, str, int] | None:
    """Split 'UC-SEC-001' into ('UC', 'SEC', 1); None if the id has another shape."""
    match = USE_CASE_ID_PATTERN.match(use_case_id)
    if not match:
        return None
    return match.group("prefix"), match.group("token"), int(match.group("number"))


def parse_scenario_id(scenario_id: str) -> tuple[str, int] | None:
    """Split 'UC-SEC-001-S02' into ('UC-SEC-001', 2); None if the id has another shape."""
    match = SCENARIO_ID_PATTERN.match(scenario_id)
    if not match:
        return None
    return match.group("use_case_id"), int(match.group("number"))


def smallest_unused(used: Iterable[int], capacity: int, scope: str) -> int:
    """
    Return the smallest sequence number in 1..capacity not present in used.

    Raises:
        CapacityExceededError: if every slot is taken
    """
    taken = set(used)
    for candidate in range(1, capacity + 1):
        if candidate not in taken:
            return candidate
    raise CapacityExceededError(scope, capacity)


# =============================================================================
# Allocator
# =============================================================================

class IdentifierAllocator:
    """
    Allocates use case and scenario identifiers from repository contents.

    The allocator holds no counters of its own: every call scans the
    identifiers currently stored, so the result only depends on the stored
    state and both backends allocate identically.
    """

    def __init__(
        self,
        repository: "Repository",
        *,
        prefix: str = DEFAULT_PREFIX,
        token_strategy: str = "extend",
        category_tokens: Mapping[str, str] | None = None,
        sequence_width: int = SEQUENCE_WIDTH,
        scenario_width: int = SCENARIO_SEQUENCE_WIDTH,
    ):
        if token_strategy not in TOKEN_STRATEGIES:
            raise ValueError(
                f"Invalid token strategy '{token_strategy}'. Valid: {', '.join(TOKEN_STRATEGIES)}"
            )
        self.repository = repository
        self.prefix = prefix.upper()
        self.token_strategy = token_strategy
        self.category_tokens = {
            category_key(k): v.upper() for k, v in (category_tokens or {}).items()
        }
        self.sequence_width = sequence_width
        self.scenario_width = scenario_width

    @property
    def sequence_capacity(self) -> int:
        return 10 ** self.sequence_width - 1

    @property
    def scenario_capacity(self) -> int:
        return 10 ** self.scenario_width - 1

    # ------------------------------------------------------------------ #
    #  Tokens
    # ------------------------------------------------------------------ #

    def _token_usage(self) -> tuple[dict[str, set[str]], dict[str, str]]:
        """
        Scan stored use cases.

        Returns:
            (token -> categories using it, category -> token of its lowest id)
        """
        owners: dict[str, set[str]] = {}
        category_token: dict[str, str] = {}
        for use_case in self.repository.list(USE_CASE):
            parsed = parse_use_case_id(use_case.id)
            if parsed is None or parsed[0] != self.prefix:
                continue
            token = parsed[1]
            key = category_key(use_case.category)
            owners.setdefault(token, set()).add(key)
            category_token.setdefault(key, token)
        return owners, category_token

    def token_for(self, category: str) -> str:
        """
        Resolve the identifier token for a category.

        Raises:
            TokenCollisionError: strict strategy and the derived token belongs
                to another category, or no extended candidate is free
        """
        key = category_key(category)
        if key in self.category_tokens:
            return self.category_tokens[key]

        owners, category_token = self._token_usage()
        if key in category_token:
            return category_token[key]

        reserved = {
            token: {k}
            for k, token in self.category_tokens.items()
            if k != key
        }

        def owner_of(token: str) -> str | None:
            others = (owners.get(token, set()) | reserved.get(token, set())) - {key}
            return min(others) if others else None

        base = derive_token(category)
        owner = owner_of(base)
        if owner is None:
            return base

        if self.token_strategy == "strict":
            raise TokenCollisionError(category, base, owner)

        chars = _category_chars(category)
        candidates = [chars[:n] for n in EXTENDED_TOKEN_LENGTHS if len(chars) >= n]
        candidates.extend(f"{base}{digit}" for digit in range(2, 10))
        for candidate in candidates:
            if owner_of(candidate) is None:
                _logger.debug(
                    "Token %s for category %r collides with %r, using %s",
                    base, category, owner, candidate,
                )
                return candidate
        raise TokenCollisionError(category, base, owner)

    # ------------------------------------------------------------------ #
    #  Allocation
    # ------------------------------------------------------------------ #

    def allocate(self, category: str, entity_kind: str = USE_CASE) -> str:
        """
        Allocate the next free use case identifier for a category.

        Args:
            category: Category name (e.g. "Security")
            entity_kind: Only "use_case" is category-scoped; scenarios go
                through allocate_scenario()

        Returns:
            Identifier such as "UC-SEC-001"

        Raises:
            CapacityExceededError: all numbers of the token are in use
            TokenCollisionError: see token_for()
        """
        if entity_kind != USE_CASE:
            raise ValueError(
                f"Category allocation is only defined for use cases, got '{entity_kind}'"
            )
        token = self.token_for(category)
        used = []
        for use_case in self.repository.list(USE_CASE):
            parsed = parse_use_case_id(use_case.id)
            if parsed and parsed[0] == self.prefix and parsed[1] == token:
                used.append(parsed[2])
        number = smallest_unused(used, self.sequence_capacity, f"{self.prefix}-{token}")
        identifier = f"{self.prefix}-{token}-{number:0{self.sequence_width}d}"
        _logger.debug("Allocated use case id %s for category %r", identifier, category)
        return identifier

    def allocate_scenario(self, use_case_id: str) -> str:
        """
        Allocate the next free scenario identifier inside a use case.

        Raises:
            NotFoundError: the use case does not exist
            CapacityExceededError: all scenario numbers of the use case are in use
        """
        use_case = self.repository.get(USE_CASE, use_case_id)
        if use_case is None:
            raise NotFoundError(USE_CASE, use_case_id)

        existing = set(use_case.scenario_ids)
        existing.update(s.id for s in self.repository.list(SCENARIO, {"use_case_id": use_case_id}))
        used = []
        for scenario_id in existing:
            parsed = parse_scenario_id(scenario_id)
            if parsed and parsed[0] == use_case_id:
                used.append(parsed[1])
        number = smallest_unused(used, self.scenario_capacity, use_case_id)
        identifier = f"{use_case_id}-S{number:0{self.scenario_width}d}"
        _logger.debug("Allocated scenario id %s", identifier)
        return identifier
