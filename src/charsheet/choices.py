"""Choice Resolver: candidate options for a progression choice.

Filtering is total: an unknown pool or a filter nothing satisfies yields an
empty list, which callers display as "ruleset defines no options".
"""

from __future__ import annotations

import logging

from .rulesets.models import ChoiceFilter, ChoiceSpec, Option, Ruleset

logger = logging.getLogger(__name__)


CANTRIP_QUALIFIERS = {"cantrip", "cantrips"}
LEVELED_QUALIFIERS = {"known", "spell", "leveled"}


def resolve_pool(ruleset: Ruleset, pool_key: str) -> list[Option]:
    """Return the options a pool key names, in pool order.

    A plain key (``"infusions"``) names a pool directly. A compound key
    selects a subset of its base pool:

    - ``spells.cantrip`` -> spells of level 0
    - ``spells.known`` -> spells of level 1 or higher
    - ``spells.3`` -> spells of level 3
    - ``<pool>.<tag>`` -> options of ``<pool>`` tagged ``<tag>``
    """
    if not pool_key:
        return []

    direct = ruleset.pools.get(pool_key)
    if direct is not None:
        return list(direct)

    base, _, qualifier = pool_key.partition(".")
    pool = ruleset.pools.get(base)
    if pool is None or not qualifier:
        logger.debug(f"Pool '{pool_key}' not defined by ruleset '{ruleset.id}'")
        return []

    qualifier = qualifier.lower()
    if base == "spells":
        if qualifier in CANTRIP_QUALIFIERS:
            return [o for o in pool if o.level == 0]
        if qualifier in LEVELED_QUALIFIERS:
            return [o for o in pool if o.level]
        if qualifier.isdigit():
            return [o for o in pool if o.level == int(qualifier)]
    return [o for o in pool if qualifier in o.tags]


def matches_class(option: Option, class_id: str | None) -> bool:
    """Whether an option is available to ``class_id``.

    Options that declare no class restriction at all are open to every class.
    """
    required = option.requires.class_ if option.requires else None
    if required is None and not option.lists:
        return True
    if class_id is None:
        return False
    return required == class_id or class_id in option.lists


def filter_options(
    options: list[Option],
    choice_filter: ChoiceFilter,
    *,
    class_id: str | None,
    at_level: int,
    subclass_id: str | None = None,
) -> list[Option]:
    """Apply class, minimum-level, tag and subclass filtering in pool order."""
    wanted_class = choice_filter.class_ or class_id
    kept: list[Option] = []
    for option in options:
        requires = option.requires

        if not matches_class(option, wanted_class):
            continue
        if ((requires.min_level if requires else None) or 0) > at_level:
            continue
        if choice_filter.min_level is not None and option.level is not None and option.level < choice_filter.min_level:
            continue
        if choice_filter.tag and choice_filter.tag not in option.tags:
            continue
        if choice_filter.tags_any and not any(t in option.tags for t in choice_filter.tags_any):
            continue
        if choice_filter.tags_all and not all(t in option.tags for t in choice_filter.tags_all):
            continue
        if requires and requires.subclass and subclass_id and requires.subclass != subclass_id:
            continue
        kept.append(option)
    return kept


def options_for(
    ruleset: Ruleset,
    class_id: str | None,
    choice: ChoiceSpec,
    at_level: int,
    *,
    subclass_id: str | None = None,
) -> list[Option]:
    """Candidate options the player may pick for ``choice`` at ``at_level``.

    Args:
        ruleset: Ruleset providing the pools.
        class_id: The advancing class; ``choice.filter.class_`` overrides it.
        choice: The choice declaration from a progression node.
        at_level: Character level the choice is made at.
        subclass_id: Character subclass, when known.

    Returns:
        Qualifying options, stable relative to pool order. Possibly empty.
    """
    return filter_options(
        resolve_pool(ruleset, choice.from_),
        choice.filter,
        class_id=class_id,
        at_level=at_level,
        subclass_id=subclass_id,
    )


__all__ = [
    "filter_options",
    "matches_class",
    "options_for",
    "resolve_pool",
]
