"""
Matching of catalog-entered system/category names against dataset keys.

System keys and fabric categories are typed in by staff, so the same key shows
up as "uni1_zebra", "UNI1_ZEBRA" or "uni1 zebra". Matching order is fixed and
always walks the dataset keys in load order.
"""
from collections import namedtuple

EXACT = 'exact'
CASE_INSENSITIVE = 'case_insensitive'
NORMALIZED = 'normalized'
FALLBACK = 'fallback'

KeyMatch = namedtuple('KeyMatch', ['key', 'method'])


def normalize_key(value):
    """Trim, lower-case and drop every whitespace character"""
    return ''.join(value.strip().lower().split())


def _first(keys, predicate):
    for key in keys:
        if isinstance(key, str) and predicate(key):
            return key
    return None


def match_system_key(products, system_key):
    """Exact, then normalized match. Unknown systems have no fallback."""
    if not isinstance(system_key, str):
        return None
    if system_key in products:
        return KeyMatch(system_key, EXACT)

    wanted = normalize_key(system_key)
    key = _first(products, lambda k: normalize_key(k) == wanted)
    if key is not None:
        return KeyMatch(key, NORMALIZED)
    return None


def match_category(categories, category):
    """Exact, case-insensitive, normalized, then the first category as fallback"""
    if isinstance(category, str):
        if category in categories:
            return KeyMatch(category, EXACT)

        lowered = category.lower()
        key = _first(categories, lambda k: k.lower() == lowered)
        if key is not None:
            return KeyMatch(key, CASE_INSENSITIVE)

        wanted = normalize_key(category)
        key = _first(categories, lambda k: normalize_key(k) == wanted)
        if key is not None:
            return KeyMatch(key, NORMALIZED)

    for key in categories:
        return KeyMatch(key, FALLBACK)
    return None


def resolve_system_key(products, system_key):
    match = match_system_key(products, system_key)
    return match.key if match else None


def resolve_category(categories, category):
    match = match_category(categories, category)
    return match.key if match else None
