"""
Process-wide coefficient resolver.

The dataset is loaded once (on first use or from AppConfig.ready) and never
mutated. Reloading builds a new resolver and swaps the reference, so lookups
already running keep the dataset they started with.
"""
import logging
import threading

from django.conf import settings

from .dataset import load_dataset
from .resolver import CoefficientResolver
from .signals import send_lookup_event

logger = logging.getLogger(__name__)

_resolver = None
_load_lock = threading.Lock()


def build_resolver(dataset):
    """Resolver wired to the coefficient_lookup_event signal"""
    return CoefficientResolver(dataset, listener=send_lookup_event)


def get_resolver():
    global _resolver
    resolver = _resolver
    if resolver is not None:
        return resolver
    with _load_lock:
        if _resolver is None:
            _resolver = build_resolver(load_dataset(settings.COEFFICIENTS_DATA_PATH))
        return _resolver


def set_resolver(resolver):
    """Swap in another resolver (None forces a reload on next use), returns the previous one"""
    global _resolver
    with _load_lock:
        previous, _resolver = _resolver, resolver
    return previous


def install_dataset(dataset):
    resolver = build_resolver(dataset)
    set_resolver(resolver)
    return resolver


def reload_dataset(path=None):
    """Re-read the coefficients file and swap it in"""
    path = path or settings.COEFFICIENTS_DATA_PATH
    logger.info(f'Reloading coefficient data from {path}')
    return install_dataset(load_dataset(path))


# Library-style shortcuts over the current resolver

def get_coefficient(system_key, category, width, height):
    return get_resolver().get_coefficient(system_key, category, width, height)


def get_coefficient_detailed(system_key, category, width, height):
    return get_resolver().get_coefficient_detailed(system_key, category, width, height)


def get_available_systems():
    return get_resolver().get_available_systems()


def get_system_categories(system_key):
    return get_resolver().get_system_categories(system_key)


def get_coefficient_ranges(system_key, category):
    return get_resolver().get_coefficient_ranges(system_key, category)
