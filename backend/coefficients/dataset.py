"""
Pricing dataset: immutable in-memory copy of coefficients.json

Shape of the source resource:
    {"products": {<system_key>: {"categories": {<category>: {
        "widths": [...], "heights": [...], "values": [[...], ...]}}}}}

Keys are kept exactly as the file defines them and in file order.
"""
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from collections.abc import Mapping
from typing import Optional, Tuple
import json
import logging

logger = logging.getLogger(__name__)


class CoefficientDataError(ValueError):
    """Raised when the resource is not shaped like a pricing dataset"""


def _as_tuple(value):
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return None


def _as_rows(value):
    if not isinstance(value, (list, tuple)):
        return None
    return tuple(tuple(row) if isinstance(row, (list, tuple)) else row for row in value)


def _is_ascending(axis):
    try:
        return all(a < b for a, b in zip(axis, axis[1:]))
    except TypeError:
        return False


@dataclass(frozen=True)
class Grid:
    """Coefficient samples, values indexed [height_index][width_index]"""
    widths: Optional[Tuple] = None
    heights: Optional[Tuple] = None
    values: Optional[Tuple] = None

    @classmethod
    def from_raw(cls, raw):
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            widths=_as_tuple(raw.get('widths')),
            heights=_as_tuple(raw.get('heights')),
            values=_as_rows(raw.get('values')),
        )

    @property
    def is_usable(self):
        """Axes and value table are present and both axes are non-empty"""
        return (
            self.widths is not None
            and self.heights is not None
            and self.values is not None
            and len(self.widths) > 0
            and len(self.heights) > 0
        )

    @property
    def width_range(self):
        if not self.widths:
            return None
        return {'min': self.widths[0], 'max': self.widths[-1]}

    @property
    def height_range(self):
        if not self.heights:
            return None
        return {'min': self.heights[0], 'max': self.heights[-1]}

    def issues(self):
        """Human-readable list of structural problems, empty when the grid looks sane"""
        problems = []
        for name in ('widths', 'heights', 'values'):
            if getattr(self, name) is None:
                problems.append(f'{name} missing')
        if self.widths is not None and len(self.widths) == 0:
            problems.append('widths empty')
        if self.heights is not None and len(self.heights) == 0:
            problems.append('heights empty')
        if problems:
            return problems

        if not _is_ascending(self.widths):
            problems.append('widths not strictly ascending')
        if not _is_ascending(self.heights):
            problems.append('heights not strictly ascending')
        if len(self.values) != len(self.heights):
            problems.append(f'{len(self.values)} value rows for {len(self.heights)} heights')
        for index, row in enumerate(self.values):
            if not isinstance(row, tuple):
                problems.append(f'row {index} is not a list')
            elif len(row) != len(self.widths):
                problems.append(f'row {index} has {len(row)} values for {len(self.widths)} widths')
        return problems


@dataclass(frozen=True)
class Product:
    categories: Mapping[str, Grid] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class PricingDataset:
    products: Mapping[str, Product] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def empty(cls):
        return cls()

    def __len__(self):
        return len(self.products)

    def grids(self):
        """Yield (system_key, category, grid) in load order"""
        for system_key, product in self.products.items():
            for category, grid in product.categories.items():
                yield system_key, category, grid


def parse_dataset(raw):
    """
    Build a PricingDataset from decoded JSON.

    Only the top level is strict: anything below it that is malformed is kept
    as an empty product or an unusable grid so lookups can report it.
    """
    if not isinstance(raw, Mapping):
        raise CoefficientDataError('Coefficient data must be an object')
    raw_products = raw.get('products')
    if not isinstance(raw_products, Mapping):
        raise CoefficientDataError('Coefficient data has no "products" object')

    products = {}
    for system_key, raw_product in raw_products.items():
        raw_categories = raw_product.get('categories') if isinstance(raw_product, Mapping) else None
        if not isinstance(raw_categories, Mapping):
            logger.warning(f'System "{system_key}" has no categories object, treating it as empty')
            raw_categories = {}
        categories = {
            category: Grid.from_raw(raw_grid)
            for category, raw_grid in raw_categories.items()
        }
        products[system_key] = Product(categories=MappingProxyType(categories))

    return PricingDataset(products=MappingProxyType(products))


def load_dataset(path):
    """
    Read and parse the coefficients file.

    Returns an empty dataset when the file is missing or unreadable; the error is logged.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f'Coefficient file {path} not found, using empty data')
        return PricingDataset.empty()

    try:
        with path.open(encoding='utf-8') as fh:
            dataset = parse_dataset(json.load(fh))
    except (OSError, ValueError) as e:
        logger.error(f'Failed to load coefficient file {path}: {str(e)}')
        return PricingDataset.empty()

    for system_key, category, grid in dataset.grids():
        problems = grid.issues()
        if problems:
            logger.warning(
                f'Grid for system "{system_key}", category "{category}" has issues: {", ".join(problems)}'
            )
    logger.info(f'Loaded coefficients for {len(dataset)} systems from {path}')
    return dataset
