"""
Coefficient lookup: key resolution + grid interpolation over one dataset.

Nothing here raises to the caller. Every failure ends as a LookupResult with
coefficient=None and whatever keys were resolved before the failure.
"""
from dataclasses import dataclass, asdict
from typing import Optional
import logging

from .dataset import PricingDataset
from .interpolation import bilinear_interpolate
from .keys import match_system_key, match_category, EXACT, FALLBACK

logger = logging.getLogger(__name__)

# Lookup event kinds
SYSTEM_NOT_FOUND = 'system_not_found'
SYSTEM_NORMALIZED = 'system_normalized'
CATEGORY_MATCHED_LOOSELY = 'category_matched_loosely'
CATEGORY_FALLBACK = 'category_fallback'
CATEGORY_NOT_FOUND = 'category_not_found'
GRID_MALFORMED = 'grid_malformed'
INTERPOLATION_FAILED = 'interpolation_failed'


@dataclass(frozen=True)
class LookupResult:
    coefficient: Optional[float] = None
    used_system_key: Optional[str] = None
    used_category: Optional[str] = None
    is_fallback_category: bool = False

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class LookupEvent:
    """Diagnostic record for a lookup that did not go the exact-match way"""
    kind: str
    system_key: object
    category: object
    used_system_key: Optional[str] = None
    used_category: Optional[str] = None
    message: str = ''


class CoefficientResolver:
    """
    Read-only lookups against a PricingDataset.

    listener, if given, is called with a LookupEvent for every fallback or
    failure. It must not be relied on for results; its errors are logged and
    swallowed.
    """

    def __init__(self, dataset: PricingDataset, listener=None):
        self.dataset = dataset
        self.listener = listener

    def _emit(self, kind, level, message, system_key, category,
              used_system_key=None, used_category=None, exc_info=False):
        logger.log(level, message, exc_info=exc_info)
        if self.listener is None:
            return
        event = LookupEvent(
            kind=kind,
            system_key=system_key,
            category=category,
            used_system_key=used_system_key,
            used_category=used_category,
            message=message,
        )
        try:
            self.listener(event)
        except Exception:
            logger.exception(f'Coefficient lookup listener failed on {kind} event')

    def get_coefficient_detailed(self, system_key, category, width, height) -> LookupResult:
        """Resolve keys, interpolate, and report which keys were actually used"""
        system_match = match_system_key(self.dataset.products, system_key)
        if system_match is None:
            self._emit(
                SYSTEM_NOT_FOUND, logging.WARNING,
                f'System "{system_key}" not found in coefficient data',
                system_key, category,
            )
            return LookupResult()

        used_system_key = system_match.key
        if system_match.method != EXACT:
            self._emit(
                SYSTEM_NORMALIZED, logging.INFO,
                f'System "{system_key}" matched as "{used_system_key}"',
                system_key, category, used_system_key,
            )

        categories = self.dataset.products[used_system_key].categories
        category_match = match_category(categories, category)
        if category_match is None:
            self._emit(
                CATEGORY_NOT_FOUND, logging.WARNING,
                f'Category "{category}" not found for system "{used_system_key}" and no categories to fall back to',
                system_key, category, used_system_key,
            )
            return LookupResult(used_system_key=used_system_key)

        used_category = category_match.key
        is_fallback = used_category != category
        if category_match.method == FALLBACK:
            self._emit(
                CATEGORY_FALLBACK, logging.WARNING,
                f'Category "{category}" not found for system "{used_system_key}", using "{used_category}"',
                system_key, category, used_system_key, used_category,
            )
        elif category_match.method != EXACT:
            self._emit(
                CATEGORY_MATCHED_LOOSELY, logging.INFO,
                f'Category "{category}" matched as "{used_category}" for system "{used_system_key}"',
                system_key, category, used_system_key, used_category,
            )

        partial = LookupResult(
            used_system_key=used_system_key,
            used_category=used_category,
            is_fallback_category=is_fallback,
        )

        grid = categories[used_category]
        if not grid.is_usable:
            self._emit(
                GRID_MALFORMED, logging.WARNING,
                f'Malformed grid for system "{used_system_key}", category "{used_category}"',
                system_key, category, used_system_key, used_category,
            )
            return partial

        try:
            coefficient = bilinear_interpolate(width, height, grid.widths, grid.heights, grid.values)
        except Exception as e:
            self._emit(
                INTERPOLATION_FAILED, logging.ERROR,
                f'Interpolation failed for system "{used_system_key}", category "{used_category}" '
                f'at {width!r} x {height!r}: {str(e)}',
                system_key, category, used_system_key, used_category, exc_info=True,
            )
            return partial

        return LookupResult(
            coefficient=coefficient,
            used_system_key=used_system_key,
            used_category=used_category,
            is_fallback_category=is_fallback,
        )

    def get_coefficient(self, system_key, category, width, height) -> Optional[float]:
        return self.get_coefficient_detailed(system_key, category, width, height).coefficient

    def get_available_systems(self):
        return list(self.dataset.products)

    def get_system_categories(self, system_key):
        """Category keys for an exact system key, [] otherwise"""
        product = self.dataset.products.get(system_key)
        if product is None:
            return []
        return list(product.categories)

    def get_coefficient_ranges(self, system_key, category):
        """Width/height {min, max} for an exact system/category pair"""
        product = self.dataset.products.get(system_key)
        grid = product.categories.get(category) if product is not None else None
        if grid is None:
            return {'width_range': None, 'height_range': None}
        return {'width_range': grid.width_range, 'height_range': grid.height_range}
