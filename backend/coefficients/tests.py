"""
Comprehensive test suite for Coefficients module
Tests: bilinear interpolation, key matching, dataset loading, resolver facade,
process-wide registry and signals, API endpoints, check_coefficients command
"""
from dataclasses import FrozenInstanceError
from io import StringIO
from pathlib import Path
from types import MappingProxyType
import json
import tempfile

from django.conf import settings
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient, CoefficientDataMixin
from backend.coefficients import registry
from backend.coefficients.dataset import CoefficientDataError, Grid, PricingDataset, Product, load_dataset, parse_dataset
from backend.coefficients.interpolation import bilinear_interpolate
from backend.coefficients.keys import (
    CASE_INSENSITIVE, EXACT, FALLBACK, NORMALIZED,
    match_category, match_system_key, normalize_key, resolve_category, resolve_system_key
)
from backend.coefficients.resolver import (
    CATEGORY_FALLBACK, CATEGORY_MATCHED_LOOSELY, CATEGORY_NOT_FOUND, GRID_MALFORMED,
    INTERPOLATION_FAILED, SYSTEM_NORMALIZED, SYSTEM_NOT_FOUND,
    CoefficientResolver, LookupResult
)
from backend.coefficients.signals import coefficient_lookup_event

RESOLVER_LOGGER = 'backend.coefficients.resolver'


def write_json(directory, payload, name='coefficients.json'):
    path = Path(directory) / name
    path.write_text(json.dumps(payload), encoding='utf-8')
    return path


class BilinearInterpolationTests(SimpleTestCase):
    """Test grid interpolation and edge clamping"""

    def setUp(self):
        self.widths = [1, 2]
        self.heights = [1, 2]
        self.values = [[10, 20], [30, 40]]

    def interpolate(self, width, height):
        return bilinear_interpolate(width, height, self.widths, self.heights, self.values)

    def test_grid_corners(self):
        """Test values on grid nodes"""
        self.assertEqual(self.interpolate(1, 1), 10)
        self.assertEqual(self.interpolate(2, 1), 20)
        self.assertEqual(self.interpolate(1, 2), 30)
        self.assertEqual(self.interpolate(2, 2), 40)

    def test_cell_center(self):
        """Test bilinear value in the middle of a cell"""
        self.assertEqual(self.interpolate(1.5, 1.5), 25)

    def test_no_rounding(self):
        """Test result is not rounded"""
        self.assertEqual(self.interpolate(1.25, 1), 12.5)

    def test_width_below_range_is_clamped(self):
        """Test width below the first sample holds the edge value"""
        self.assertEqual(self.interpolate(0.5, 1), 10)

    def test_width_above_range_interpolates_height_only(self):
        """Test width above the last sample, height inside the range"""
        self.assertEqual(self.interpolate(5, 1.5), 30)

    def test_height_above_range_interpolates_width_only(self):
        """Test height above the last sample, width inside the range"""
        self.assertEqual(self.interpolate(1.5, 10), 35)

    def test_both_axes_outside_range(self):
        """Test point outside the grid on both axes"""
        self.assertEqual(self.interpolate(-1, -1), 10)
        self.assertEqual(self.interpolate(9, 9), 40)

    def test_outside_range_equals_clamped_coordinate(self):
        """Test there is no extrapolation past the sampled range"""
        for width in (0.1, 0.9, -3):
            self.assertEqual(self.interpolate(width, 1.3), self.interpolate(1, 1.3))
        for width in (2.1, 7):
            self.assertEqual(self.interpolate(width, 1.7), self.interpolate(2, 1.7))
        for height in (0.2, 0.99):
            self.assertEqual(self.interpolate(1.4, height), self.interpolate(1.4, 1))
        for height in (2.5, 100):
            self.assertEqual(self.interpolate(1.4, height), self.interpolate(1.4, 2))

    def test_every_grid_node_returns_its_value(self):
        """Test exact node lookups on a larger grid"""
        widths = [0.4, 0.6, 0.8, 1.0]
        heights = [1.0, 1.5, 2.0]
        values = [
            [100, 120, 140, 160],
            [110, 135, 160, 185],
            [120, 150, 180, 210],
        ]
        for j, height in enumerate(heights):
            for i, width in enumerate(widths):
                self.assertEqual(bilinear_interpolate(width, height, widths, heights, values), values[j][i])

    def test_monotonic_along_width(self):
        """Test increasing grid values give non-decreasing results along an axis"""
        widths = [0.4, 0.6, 0.8, 1.0, 1.5]
        heights = [1.0, 2.0]
        values = [[1, 2, 4, 7, 11], [3, 5, 8, 12, 17]]
        samples = [
            bilinear_interpolate(0.3 + step * 0.05, 1.37, widths, heights, values)
            for step in range(30)
        ]
        self.assertTrue(all(a <= b for a, b in zip(samples, samples[1:])))

    def test_monotonic_along_height(self):
        """Test increasing grid values along height"""
        widths = [1.0, 2.0]
        heights = [1.0, 1.5, 2.5]
        values = [[1, 2], [5, 6], [9, 20]]
        samples = [
            bilinear_interpolate(1.6, 0.8 + step * 0.1, widths, heights, values)
            for step in range(25)
        ]
        self.assertTrue(all(a <= b for a, b in zip(samples, samples[1:])))

    def test_single_sample_grid(self):
        """Test grid with a single node"""
        self.assertEqual(bilinear_interpolate(3, 0.2, [1], [1], [[7]]), 7)

    def test_single_width_column(self):
        """Test grid with one width sample interpolates along height"""
        self.assertEqual(bilinear_interpolate(5, 1.5, [1], [1, 2], [[10], [30]]), 20)

    def test_ragged_values_raise(self):
        """Test short value row raises"""
        with self.assertRaises(IndexError):
            bilinear_interpolate(2, 2, [1, 2], [1, 2], [[10, 20], [30]])

    def test_non_numeric_size_raises(self):
        """Test string size raises"""
        with self.assertRaises(TypeError):
            self.interpolate('1.5', 1)

    def test_nan_size_raises(self):
        """Test NaN is rejected on either axis"""
        with self.assertRaises(ValueError):
            self.interpolate(float('nan'), 1)
        with self.assertRaises(ValueError):
            self.interpolate(1, float('nan'))

    def test_infinite_size_is_clamped(self):
        """Test infinity holds the edge value like any other out-of-range size"""
        self.assertEqual(self.interpolate(float('inf'), 1), 20)
        self.assertEqual(self.interpolate(float('-inf'), 1), 10)
        self.assertEqual(self.interpolate(1.5, float('inf')), 35)
        self.assertEqual(self.interpolate(float('inf'), float('-inf')), 20)

    def test_grid_node_returns_value_unchanged(self):
        """Test node lookups return the stored value without conversion"""
        result = self.interpolate(1, 1)
        self.assertEqual(result, 10)
        self.assertIsInstance(result, int)

    def test_non_numeric_value_raises_on_node_and_inside_cell(self):
        """Test a string cell fails the same way on every path"""
        values = [['10', 20], [30, 40]]
        with self.assertRaises(TypeError):
            bilinear_interpolate(1, 1, self.widths, self.heights, values)
        with self.assertRaises(TypeError):
            bilinear_interpolate(1.5, 1.5, self.widths, self.heights, values)
        with self.assertRaises(TypeError):
            bilinear_interpolate(1.5, 1, self.widths, self.heights, values)


class KeyMatchingTests(SimpleTestCase):
    """Test system and category key matching"""

    def setUp(self):
        self.products = {'uni1_zebra': None, 'Mini Roll': None, 'mini_zebra': None}
        self.categories = {'E': None, '1': None, '2': None}

    def test_normalize_key(self):
        """Test trimming, lower-casing and whitespace removal"""
        self.assertEqual(normalize_key('  Uni1 Zebra\t'), 'uni1zebra')
        self.assertEqual(normalize_key('E'), 'e')

    def test_system_exact(self):
        """Test exact system key"""
        self.assertEqual(match_system_key(self.products, 'uni1_zebra'), ('uni1_zebra', EXACT))

    def test_system_case_and_whitespace(self):
        """Test system key differing only by case/whitespace"""
        self.assertEqual(resolve_system_key(self.products, 'UNI1_ZEBRA'), 'uni1_zebra')
        self.assertEqual(resolve_system_key(self.products, ' uni1_zebra '), 'uni1_zebra')
        self.assertEqual(resolve_system_key(self.products, 'uni1 _Zebra'), 'uni1_zebra')
        self.assertEqual(resolve_system_key(self.products, 'mini roll'), 'Mini Roll')
        self.assertEqual(match_system_key(self.products, 'MINIROLL').method, NORMALIZED)

    def test_system_other_spelling_not_matched(self):
        """Test underscores are significant in system keys"""
        self.assertIsNone(resolve_system_key(self.products, 'uni_1_zebra'))
        self.assertIsNone(resolve_system_key(self.products, 'uni1zebra'))

    def test_system_unknown(self):
        """Test unknown system has no fallback"""
        self.assertIsNone(resolve_system_key(self.products, 'unknown_system'))
        self.assertIsNone(resolve_system_key({}, 'uni1_zebra'))

    def test_system_non_string(self):
        """Test non-string system key"""
        self.assertIsNone(resolve_system_key(self.products, None))
        self.assertIsNone(resolve_system_key(self.products, 42))

    def test_system_first_normalized_match_wins(self):
        """Test load order decides between keys normalizing to the same value"""
        products = {'Uni1_Zebra': None, 'uni1_zebra ': None}
        self.assertEqual(resolve_system_key(products, 'UNI1_ZEBRA'), 'Uni1_Zebra')

    def test_category_exact(self):
        """Test exact category"""
        self.assertEqual(match_category(self.categories, '1'), ('1', EXACT))

    def test_category_case_insensitive(self):
        """Test lower-case category matches upper-case key"""
        self.assertEqual(match_category(self.categories, 'e'), ('E', CASE_INSENSITIVE))

    def test_category_case_insensitive_first_in_order(self):
        """Test first case-insensitive match in load order"""
        categories = {'Premium': None, 'PREMIUM': None}
        self.assertEqual(resolve_category(categories, 'premium'), 'Premium')

    def test_category_normalized(self):
        """Test whitespace is only ignored in the normalized step"""
        self.assertEqual(match_category(self.categories, ' e '), ('E', NORMALIZED))
        categories = {'Cat 3': None}
        self.assertEqual(match_category(categories, 'cat3'), ('Cat 3', NORMALIZED))

    def test_category_fallback_to_first(self):
        """Test unmatched category falls back to the first key"""
        categories = {'3': None, 'E': None}
        for _ in range(3):
            self.assertEqual(match_category(categories, 'XYZ'), ('3', FALLBACK))

    def test_category_non_string_falls_back(self):
        """Test missing category falls back to the first key"""
        self.assertEqual(match_category(self.categories, None), ('E', FALLBACK))

    def test_non_string_dataset_keys_are_skipped(self):
        """Test loose matching ignores keys that are not strings"""
        products = {1: None, 'uni1_zebra': None}
        self.assertEqual(resolve_system_key(products, 'UNI1_ZEBRA'), 'uni1_zebra')
        self.assertIsNone(resolve_system_key({1: None}, 'x'))
        categories = {2: None, 'E': None}
        self.assertEqual(match_category(categories, 'e'), ('E', CASE_INSENSITIVE))
        self.assertEqual(match_category(categories, ' e '), ('E', NORMALIZED))
        self.assertEqual(match_category(categories, 'XYZ'), (2, FALLBACK))

    def test_category_empty(self):
        """Test no categories at all"""
        self.assertIsNone(match_category({}, 'E'))
        self.assertIsNone(resolve_category({}, 'E'))


class DatasetTests(SimpleTestCase):
    """Test dataset parsing, validation and loading"""

    def test_parse_keeps_file_order(self):
        """Test systems and categories keep their file order"""
        dataset = TestDataFactory.create_dataset({
            'mini_roll': {'2': TestDataFactory.grid_payload(), 'E': TestDataFactory.grid_payload()},
            'uni1_zebra': {'1': TestDataFactory.grid_payload()},
        })
        self.assertEqual(list(dataset.products), ['mini_roll', 'uni1_zebra'])
        self.assertEqual(list(dataset.products['mini_roll'].categories), ['2', 'E'])

    def test_parse_builds_tuples(self):
        """Test grid arrays become tuples"""
        grid = TestDataFactory.create_dataset().products['uni1_zebra'].categories['E']
        self.assertEqual(grid.widths, (1, 2))
        self.assertEqual(grid.heights, (1, 2))
        self.assertEqual(grid.values, ((10, 20), (30, 40)))
        self.assertTrue(grid.is_usable)
        self.assertEqual(grid.issues(), [])

    def test_dataset_is_read_only(self):
        """Test dataset cannot be modified after load"""
        dataset = TestDataFactory.create_dataset()
        with self.assertRaises(TypeError):
            dataset.products['new'] = None
        with self.assertRaises(TypeError):
            dataset.products['uni1_zebra'].categories['X'] = None
        with self.assertRaises(FrozenInstanceError):
            dataset.products = {}
        with self.assertRaises(FrozenInstanceError):
            dataset.products['uni1_zebra'].categories['E'].widths = (1,)

    def test_parse_rejects_wrong_top_level(self):
        """Test non-dataset documents"""
        with self.assertRaises(CoefficientDataError):
            parse_dataset([])
        with self.assertRaises(CoefficientDataError):
            parse_dataset({'items': {}})
        with self.assertRaises(CoefficientDataError):
            parse_dataset({'products': []})

    def test_parse_product_without_categories(self):
        """Test malformed product becomes an empty one"""
        with self.assertLogs('backend.coefficients.dataset', level='WARNING'):
            dataset = parse_dataset({'products': {'odd': {'grids': {}}, 'worse': 5}})
        self.assertEqual(list(dataset.products), ['odd', 'worse'])
        self.assertEqual(len(dataset.products['odd'].categories), 0)

    def test_malformed_grids_are_kept(self):
        """Test malformed grids stay in the dataset as unusable"""
        dataset = TestDataFactory.create_dataset({
            'broken': {
                'empty_widths': {'widths': [], 'heights': [1], 'values': [[]]},
                'no_heights': {'widths': [1], 'values': [[1]]},
                'not_a_grid': 'oops',
            },
        })
        categories = dataset.products['broken'].categories
        self.assertFalse(categories['empty_widths'].is_usable)
        self.assertIn('widths empty', categories['empty_widths'].issues())
        self.assertFalse(categories['no_heights'].is_usable)
        self.assertIn('heights missing', categories['no_heights'].issues())
        self.assertEqual(categories['not_a_grid'], Grid())
        self.assertFalse(categories['not_a_grid'].is_usable)

    def test_grid_shape_issues(self):
        """Test issues for usable but inconsistent grids"""
        grid = Grid.from_raw({'widths': [1, 2], 'heights': [1, 2], 'values': [[10, 20], [30]]})
        self.assertTrue(grid.is_usable)
        self.assertEqual(grid.issues(), ['row 1 has 1 values for 2 widths'])

        grid = Grid.from_raw({'widths': [2, 1], 'heights': [1, 2], 'values': [[10, 20]]})
        self.assertEqual(grid.issues(), ['widths not strictly ascending', '1 value rows for 2 heights'])

    def test_grid_ranges(self):
        """Test width/height ranges come from first and last samples"""
        grid = Grid.from_raw({'widths': [0.4, 1.0, 3.0], 'heights': [], 'values': []})
        self.assertEqual(grid.width_range, {'min': 0.4, 'max': 3.0})
        self.assertIsNone(grid.height_range)

    def test_load_missing_file(self):
        """Test missing file gives an empty dataset"""
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertLogs('backend.coefficients.dataset', level='WARNING'):
                dataset = load_dataset(Path(tmp) / 'missing.json')
        self.assertEqual(len(dataset), 0)

    def test_load_invalid_json(self):
        """Test broken JSON gives an empty dataset"""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'coefficients.json'
            path.write_text('{"products": ', encoding='utf-8')
            with self.assertLogs('backend.coefficients.dataset', level='ERROR'):
                dataset = load_dataset(path)
        self.assertEqual(len(dataset), 0)

    def test_load_wrong_shape(self):
        """Test valid JSON with the wrong shape gives an empty dataset"""
        with tempfile.TemporaryDirectory() as tmp:
            path = write_json(tmp, {'systems': {}})
            with self.assertLogs('backend.coefficients.dataset', level='ERROR'):
                dataset = load_dataset(path)
        self.assertEqual(len(dataset), 0)

    def test_load_file(self):
        """Test loading a valid file"""
        with tempfile.TemporaryDirectory() as tmp:
            path = write_json(tmp, TestDataFactory.dataset_payload())
            dataset = load_dataset(str(path))
        self.assertEqual(list(dataset.products), ['uni1_zebra', 'mini_roll'])

    def test_load_logs_grid_issues(self):
        """Test grid problems are reported at load time"""
        payload = TestDataFactory.dataset_payload({
            'broken': {'E': {'widths': [], 'heights': [1], 'values': [[1]]}},
        })
        with tempfile.TemporaryDirectory() as tmp:
            path = write_json(tmp, payload)
            with self.assertLogs('backend.coefficients.dataset', level='WARNING') as logs:
                load_dataset(path)
        self.assertTrue(any('widths empty' in line for line in logs.output))

    def test_bundled_data_file(self):
        """Test the shipped coefficients file loads cleanly"""
        dataset = load_dataset(settings.COEFFICIENTS_DATA_PATH)
        self.assertEqual(list(dataset.products), ['uni1_zebra', 'uni1_roll', 'mini_zebra', 'mini_roll'])
        for system_key, category, grid in dataset.grids():
            self.assertEqual(grid.issues(), [], f'{system_key}/{category}')
        self.assertEqual(list(dataset.products['uni1_zebra'].categories), ['E', '1', '2', '3', '4'])


class CoefficientResolverTests(SimpleTestCase):
    """Test the lookup facade"""

    def setUp(self):
        self.events = []
        self.resolver = CoefficientResolver(TestDataFactory.create_dataset(), listener=self.events.append)

    def resolver_for(self, products):
        return CoefficientResolver(TestDataFactory.create_dataset(products), listener=self.events.append)

    def test_exact_match(self):
        """Test exact keys are used as-is"""
        result = self.resolver.get_coefficient_detailed('uni1_zebra', 'E', 1.5, 1.5)
        self.assertEqual(result, LookupResult(
            coefficient=25.0, used_system_key='uni1_zebra', used_category='E', is_fallback_category=False
        ))
        self.assertEqual(self.events, [])

    def test_available_systems_in_load_order(self):
        """Test systems are listed in load order"""
        self.assertEqual(self.resolver.get_available_systems(), ['uni1_zebra', 'mini_roll'])

    def test_case_insensitive_keys(self):
        """Test misspelled-by-case keys resolve to the canonical ones"""
        loose = self.resolver.get_coefficient_detailed('UNI1_ZEBRA', 'e', 1.3, 1.8)
        exact = self.resolver.get_coefficient_detailed('uni1_zebra', 'E', 1.3, 1.8)
        self.assertEqual(loose.coefficient, exact.coefficient)
        self.assertEqual(loose.used_system_key, 'uni1_zebra')
        self.assertEqual(loose.used_category, 'E')
        self.assertTrue(loose.is_fallback_category)
        self.assertFalse(exact.is_fallback_category)
        self.assertEqual([e.kind for e in self.events], [SYSTEM_NORMALIZED, CATEGORY_MATCHED_LOOSELY])

    def test_loose_category_match_is_flagged(self):
        """Test any substituted category key sets the fallback flag"""
        result = self.resolver.get_coefficient_detailed('uni1_zebra', 'e', 1, 1)
        self.assertEqual(result, LookupResult(
            coefficient=10, used_system_key='uni1_zebra', used_category='E', is_fallback_category=True
        ))
        result = self.resolver.get_coefficient_detailed('uni1_zebra', ' E ', 1, 1)
        self.assertEqual(result.used_category, 'E')
        self.assertTrue(result.is_fallback_category)

    def test_loose_system_match_with_exact_category_is_not_flagged(self):
        """Test the flag only concerns the category"""
        result = self.resolver.get_coefficient_detailed('UNI1_ZEBRA', 'E', 1, 1)
        self.assertEqual(result.coefficient, 10)
        self.assertFalse(result.is_fallback_category)
        self.assertEqual([e.kind for e in self.events], [SYSTEM_NORMALIZED])

    def test_infinite_size_clamps(self):
        """Test infinite sizes hold the edge value"""
        self.assertEqual(self.resolver.get_coefficient('uni1_zebra', 'E', float('inf'), 1), 20)
        self.assertEqual(self.resolver.get_coefficient('uni1_zebra', 'E', 1, float('-inf')), 10)
        self.assertEqual(self.events, [])

    def test_nan_size(self):
        """Test NaN becomes an interpolation failure"""
        with self.assertLogs(RESOLVER_LOGGER, level='ERROR'):
            self.assertIsNone(self.resolver.get_coefficient('uni1_zebra', 'E', float('nan'), 1))
        self.assertEqual([e.kind for e in self.events], [INTERPOLATION_FAILED])

    def test_string_cell_fails_on_node(self):
        """Test a non-numeric cell is a failure even on a grid node"""
        resolver = self.resolver_for({
            'text': {'E': {'widths': [1, 2], 'heights': [1, 2], 'values': [['10', 20], [30, 40]]}},
        })
        for width, height in ((1, 1), (1.5, 1)):
            with self.assertLogs(RESOLVER_LOGGER, level='ERROR'):
                self.assertIsNone(resolver.get_coefficient('text', 'E', width, height))
        self.assertEqual(resolver.get_coefficient('text', 'E', 2, 2), 40)

    def test_non_string_dataset_keys(self):
        """Test datasets built in code with non-string keys do not break lookups"""
        grid = Grid(widths=(1, 2), heights=(1, 2), values=((10, 20), (30, 40)))
        dataset = PricingDataset(products=MappingProxyType({
            7: Product(categories=MappingProxyType({})),
            'uni1_zebra': Product(categories=MappingProxyType({3: grid, 'E': grid})),
        }))
        resolver = CoefficientResolver(dataset, listener=self.events.append)
        result = resolver.get_coefficient_detailed('UNI1_ZEBRA', 'e', 1, 1)
        self.assertEqual(result.used_category, 'E')
        self.assertEqual(result.coefficient, 10)
        with self.assertLogs(RESOLVER_LOGGER, level='WARNING'):
            self.assertIsNone(resolver.get_coefficient('other', 'E', 1, 1))

    def test_category_fallback(self):
        """Test unknown category falls back to the first one and says so"""
        for _ in range(2):
            with self.assertLogs(RESOLVER_LOGGER, level='WARNING'):
                result = self.resolver.get_coefficient_detailed('uni1_zebra', 'XYZ', 1, 1)
            self.assertEqual(result.coefficient, 10)
            self.assertEqual(result.used_category, 'E')
            self.assertTrue(result.is_fallback_category)

        self.assertEqual([e.kind for e in self.events], [CATEGORY_FALLBACK, CATEGORY_FALLBACK])
        event = self.events[0]
        self.assertEqual(event.category, 'XYZ')
        self.assertEqual(event.used_system_key, 'uni1_zebra')
        self.assertEqual(event.used_category, 'E')

    def test_unknown_system(self):
        """Test unknown system fails the lookup"""
        with self.assertLogs(RESOLVER_LOGGER, level='WARNING') as logs:
            result = self.resolver.get_coefficient_detailed('unknown_system', 'E', 1.5, 2.0)
        self.assertEqual(result, LookupResult())
        self.assertIn('unknown_system', logs.output[0])
        self.assertEqual(self.events[0].kind, SYSTEM_NOT_FOUND)
        self.assertIsNone(self.events[0].used_system_key)

    def test_unknown_category_without_fallback(self):
        """Test system without categories"""
        resolver = self.resolver_for({'empty_sys': {}})
        with self.assertLogs(RESOLVER_LOGGER, level='WARNING'):
            result = resolver.get_coefficient_detailed('empty_sys', 'E', 1, 1)
        self.assertEqual(result, LookupResult(used_system_key='empty_sys'))
        self.assertEqual(self.events[0].kind, CATEGORY_NOT_FOUND)

    def test_malformed_grid(self):
        """Test malformed grid keeps the resolved keys"""
        resolver = self.resolver_for({
            'broken': {
                'E': {'widths': [], 'heights': [1], 'values': [[1]]},
                '1': {'widths': [1], 'heights': [1]},
            },
        })
        for category in ('E', '1'):
            with self.assertLogs(RESOLVER_LOGGER, level='WARNING'):
                result = resolver.get_coefficient_detailed('broken', category, 1, 1)
            self.assertIsNone(result.coefficient)
            self.assertEqual(result.used_system_key, 'broken')
            self.assertEqual(result.used_category, category)
            self.assertFalse(result.is_fallback_category)
        self.assertEqual([e.kind for e in self.events], [GRID_MALFORMED, GRID_MALFORMED])

    def test_interpolation_failure(self):
        """Test errors during interpolation become a missing coefficient"""
        resolver = self.resolver_for({
            'ragged': {'E': {'widths': [1, 2], 'heights': [1, 2], 'values': [[10, 20], [30]]}},
        })
        with self.assertLogs(RESOLVER_LOGGER, level='ERROR'):
            result = resolver.get_coefficient_detailed('ragged', 'E', 2, 2)
        self.assertEqual(result, LookupResult(used_system_key='ragged', used_category='E'))
        self.assertEqual(self.events[0].kind, INTERPOLATION_FAILED)

    def test_interpolation_failure_keeps_fallback_flag(self):
        """Test fallback flag survives a failed interpolation"""
        resolver = self.resolver_for({
            'ragged': {'E': {'widths': [1, 2], 'heights': [1, 2], 'values': [[10, 20], [30]]}},
        })
        with self.assertLogs(RESOLVER_LOGGER, level='WARNING'):
            result = resolver.get_coefficient_detailed('ragged', 'nope', 2, 2)
        self.assertIsNone(result.coefficient)
        self.assertTrue(result.is_fallback_category)
        self.assertEqual([e.kind for e in self.events], [CATEGORY_FALLBACK, INTERPOLATION_FAILED])

    def test_non_numeric_size(self):
        """Test bad size types do not raise"""
        with self.assertLogs(RESOLVER_LOGGER, level='ERROR'):
            self.assertIsNone(self.resolver.get_coefficient('uni1_zebra', 'E', 'wide', 1))
        with self.assertLogs(RESOLVER_LOGGER, level='ERROR'):
            self.assertIsNone(self.resolver.get_coefficient('uni1_zebra', 'E', 1, None))

    def test_coefficient_matches_detailed(self):
        """Test both lookup operations agree"""
        requests = [
            ('uni1_zebra', 'E', 1.5, 1.5),
            ('UNI1_ZEBRA', 'e', 1.2, 1.9),
            ('uni1_zebra', 'XYZ', 0.3, 3),
            ('mini_roll', '2', 0.75, 1.25),
            ('mini_roll', '2', 'x', 1),
            ('unknown', 'E', 1, 1),
        ]
        with self.assertLogs(RESOLVER_LOGGER, level='INFO'):
            for request in requests:
                self.assertEqual(
                    self.resolver.get_coefficient(*request),
                    self.resolver.get_coefficient_detailed(*request).coefficient
                )

    def test_listener_errors_are_swallowed(self):
        """Test a failing listener does not affect the result"""
        def listener(event):
            raise RuntimeError('listener down')

        resolver = CoefficientResolver(TestDataFactory.create_dataset(), listener=listener)
        with self.assertLogs(RESOLVER_LOGGER, level='ERROR'):
            result = resolver.get_coefficient_detailed('uni1_zebra', 'XYZ', 1, 1)
        self.assertEqual(result.coefficient, 10)
        self.assertTrue(result.is_fallback_category)

    def test_without_listener(self):
        """Test resolver works without a listener"""
        resolver = CoefficientResolver(TestDataFactory.create_dataset())
        with self.assertLogs(RESOLVER_LOGGER, level='INFO'):
            self.assertEqual(resolver.get_coefficient('Uni1_Zebra', 'E', 2, 2), 40)

    def test_empty_dataset(self):
        """Test lookups on an empty dataset"""
        resolver = CoefficientResolver(PricingDataset.empty())
        self.assertEqual(resolver.get_available_systems(), [])
        with self.assertLogs(RESOLVER_LOGGER, level='WARNING'):
            self.assertIsNone(resolver.get_coefficient('uni1_zebra', 'E', 1, 1))

    def test_system_categories_exact_only(self):
        """Test category listing requires the exact system key"""
        self.assertEqual(self.resolver.get_system_categories('uni1_zebra'), ['E', '1'])
        self.assertEqual(self.resolver.get_system_categories('UNI1_ZEBRA'), [])
        self.assertEqual(self.resolver.get_system_categories('unknown'), [])

    def test_coefficient_ranges(self):
        """Test ranges for an exact system/category pair"""
        self.assertEqual(self.resolver.get_coefficient_ranges('mini_roll', '2'), {
            'width_range': {'min': 0.5, 'max': 1.5},
            'height_range': {'min': 1.0, 'max': 2.0},
        })

    def test_coefficient_ranges_exact_only(self):
        """Test ranges do not use fuzzy matching"""
        empty = {'width_range': None, 'height_range': None}
        self.assertEqual(self.resolver.get_coefficient_ranges('MINI_ROLL', '2'), empty)
        self.assertEqual(self.resolver.get_coefficient_ranges('uni1_zebra', 'e'), empty)
        self.assertEqual(self.resolver.get_coefficient_ranges('unknown', 'E'), empty)

    def test_coefficient_ranges_empty_axis(self):
        """Test empty axis gives no range for that axis"""
        resolver = self.resolver_for({'broken': {'E': {'widths': [], 'heights': [1, 3], 'values': []}}})
        self.assertEqual(resolver.get_coefficient_ranges('broken', 'E'), {
            'width_range': None,
            'height_range': {'min': 1, 'max': 3},
        })

    def test_lookup_result_to_dict(self):
        """Test result serialization"""
        result = self.resolver.get_coefficient_detailed('uni1_zebra', '1', 1, 1)
        self.assertEqual(result.to_dict(), {
            'coefficient': 11,
            'used_system_key': 'uni1_zebra',
            'used_category': '1',
            'is_fallback_category': False,
        })


class RegistryTests(CoefficientDataMixin, SimpleTestCase):
    """Test process-wide resolver and lookup signal"""

    def test_module_shortcuts_use_installed_dataset(self):
        """Test shortcuts delegate to the installed resolver"""
        self.use_dataset(TestDataFactory.create_dataset())
        self.assertEqual(registry.get_available_systems(), ['uni1_zebra', 'mini_roll'])
        self.assertEqual(registry.get_system_categories('mini_roll'), ['2'])
        self.assertEqual(registry.get_coefficient('uni1_zebra', 'E', 1.5, 1.5), 25)
        self.assertEqual(registry.get_coefficient_detailed('uni1_zebra', 'E', 2, 2).coefficient, 40)
        self.assertEqual(registry.get_coefficient_ranges('mini_roll', '2')['width_range'], {'min': 0.5, 'max': 1.5})

    def test_swap_does_not_touch_previous_resolver(self):
        """Test installing a dataset replaces the reference only"""
        old = self.use_dataset(TestDataFactory.create_dataset())
        registry.install_dataset(TestDataFactory.create_dataset({'other': {'E': TestDataFactory.grid_payload()}}))
        self.assertEqual(registry.get_available_systems(), ['other'])
        self.assertEqual(old.get_available_systems(), ['uni1_zebra', 'mini_roll'])

    def test_reload_from_path(self):
        """Test reloading from another file"""
        self.use_dataset(PricingDataset.empty())
        with tempfile.TemporaryDirectory() as tmp:
            path = write_json(tmp, TestDataFactory.dataset_payload())
            resolver = registry.reload_dataset(path)
        self.assertIs(registry.get_resolver(), resolver)
        self.assertEqual(registry.get_available_systems(), ['uni1_zebra', 'mini_roll'])

    def test_lazy_load_from_settings(self):
        """Test first use loads COEFFICIENTS_DATA_PATH"""
        self.use_dataset(PricingDataset.empty())
        with tempfile.TemporaryDirectory() as tmp:
            path = write_json(tmp, TestDataFactory.dataset_payload({'lazy_sys': {'E': TestDataFactory.grid_payload()}}))
            with override_settings(COEFFICIENTS_DATA_PATH=str(path)):
                registry.set_resolver(None)
                self.assertEqual(registry.get_available_systems(), ['lazy_sys'])

    def test_lookup_event_signal(self):
        """Test process-wide resolver publishes lookup events as a signal"""
        received = []

        def receiver(sender, event, **kwargs):
            received.append((sender, event))

        coefficient_lookup_event.connect(receiver)
        self.addCleanup(coefficient_lookup_event.disconnect, receiver)
        self.use_dataset(TestDataFactory.create_dataset())

        with self.assertLogs(RESOLVER_LOGGER, level='WARNING'):
            result = registry.get_coefficient_detailed('uni1_zebra', 'nope', 1, 1)
        self.assertTrue(result.is_fallback_category)
        self.assertEqual(len(received), 1)
        sender, event = received[0]
        self.assertIs(sender, CoefficientResolver)
        self.assertEqual(event.kind, CATEGORY_FALLBACK)
        self.assertEqual(event.used_category, 'E')


class CoefficientAPITests(CoefficientDataMixin, TestCase):
    """Test coefficient endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.use_dataset(TestDataFactory.create_dataset())

    def calculate(self, **payload):
        return self.client.post('/api/v1/coefficients/calculate/', payload, format='json')

    def test_requires_authentication(self):
        """Test endpoints reject anonymous requests"""
        client = AuthenticatedAPIClient()
        response = client.post('/api/v1/coefficients/calculate/', {
            'system_key': 'uni1_zebra', 'category': 'E', 'width': 1, 'height': 1
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        response = client.get('/api/v1/coefficients/systems/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_calculate_exact(self):
        """Test coefficient for exact keys"""
        response = self.calculate(system_key='uni1_zebra', category='E', width=1.5, height=1.5)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['coefficient'], 25.0)
        self.assertEqual(response.data['used_system_key'], 'uni1_zebra')
        self.assertEqual(response.data['used_category'], 'E')
        self.assertFalse(response.data['is_fallback_category'])
        self.assertNotIn('warning', response.data)

    def test_calculate_case_insensitive(self):
        """Test keys differing by case resolve and the substitution is reported"""
        response = self.calculate(system_key='UNI1_ZEBRA', category='e', width=1.5, height=1.5)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['coefficient'], 25.0)
        self.assertEqual(response.data['used_system_key'], 'uni1_zebra')
        self.assertEqual(response.data['used_category'], 'E')
        self.assertTrue(response.data['is_fallback_category'])
        self.assertIn('"e"', response.data['warning'])

    def test_calculate_keys_are_not_trimmed_before_matching(self):
        """Test padded keys still resolve through normalization"""
        response = self.calculate(system_key=' uni1_zebra ', category=' E', width=2, height=2)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['coefficient'], 40.0)
        self.assertEqual(response.data['used_system_key'], 'uni1_zebra')

    def test_calculate_fallback_category(self):
        """Test unknown category is reported as a warning"""
        response = self.calculate(system_key='uni1_zebra', category='XYZ', width=1, height=1)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['coefficient'], 10.0)
        self.assertTrue(response.data['is_fallback_category'])
        self.assertEqual(response.data['used_category'], 'E')
        self.assertIn('XYZ', response.data['warning'])

    def test_calculate_blank_category(self):
        """Test blank category falls back"""
        response = self.calculate(system_key='mini_roll', category='', width=1, height=1)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['used_category'], '2')
        self.assertTrue(response.data['is_fallback_category'])

    def test_calculate_unknown_system(self):
        """Test unknown system is a warning, not an error"""
        response = self.calculate(system_key='unknown_system', category='E', width=1, height=1)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['coefficient'])
        self.assertIsNone(response.data['used_system_key'])
        self.assertIsNone(response.data['used_category'])
        self.assertFalse(response.data['is_fallback_category'])
        self.assertIn('warning', response.data)

    def test_calculate_validation(self):
        """Test malformed request bodies"""
        response = self.calculate(system_key='uni1_zebra', category='E', height=1)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('width', response.data)

        response = self.calculate(system_key='uni1_zebra', category='E', width='wide', height=1)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.calculate(category='E', width=1, height=1)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('system_key', response.data)

    def test_system_list(self):
        """Test systems listing"""
        response = self.client.get('/api/v1/coefficients/systems/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, [
            {'system_key': 'uni1_zebra', 'categories_count': 2},
            {'system_key': 'mini_roll', 'categories_count': 1},
        ])

    def test_system_categories(self):
        """Test category listing for a system"""
        response = self.client.get('/api/v1/coefficients/systems/uni1_zebra/categories/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, ['E', '1'])

    def test_system_categories_not_found(self):
        """Test category listing needs the exact system key"""
        response = self.client.get('/api/v1/coefficients/systems/UNI1_ZEBRA/categories/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_ranges(self):
        """Test ranges endpoint"""
        response = self.client.get('/api/v1/coefficients/ranges/', {'system_key': 'mini_roll', 'category': '2'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {
            'width_range': {'min': 0.5, 'max': 1.5},
            'height_range': {'min': 1.0, 'max': 2.0},
        })

    def test_ranges_unknown_pair(self):
        """Test ranges for a pair that does not exist verbatim"""
        response = self.client.get('/api/v1/coefficients/ranges/', {'system_key': 'mini_roll', 'category': 'E'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'width_range': None, 'height_range': None})

    def test_ranges_missing_parameter(self):
        """Test ranges endpoint validation"""
        response = self.client.get('/api/v1/coefficients/ranges/', {'system_key': 'mini_roll'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('category', response.data)


class CheckCoefficientsCommandTests(CoefficientDataMixin, SimpleTestCase):
    """Test check_coefficients management command"""

    def setUp(self):
        self.use_dataset(TestDataFactory.create_dataset({
            'uni1_zebra': {
                'E': TestDataFactory.grid_payload(),
                'broken': {'widths': [], 'heights': [1], 'values': [[1]]},
            },
            'mini_roll': {'2': TestDataFactory.grid_payload()},
        }))

    def run_command(self, *args):
        out = StringIO()
        call_command('check_coefficients', *args, stdout=out)
        return out.getvalue()

    def test_lists_systems(self):
        """Test systems table"""
        output = self.run_command()
        self.assertIn('Total systems: 2', output)
        self.assertIn('uni1_zebra', output)
        self.assertIn('mini_roll', output)
        self.assertLess(output.index('uni1_zebra'), output.index('mini_roll'))

    def test_lists_categories(self):
        """Test categories table with ranges and grid status"""
        output = self.run_command('uni1_zebra')
        self.assertIn('Categories for system "uni1_zebra": 2', output)
        self.assertIn('1m - 2m', output)
        self.assertIn('OK', output)
        self.assertIn('widths empty', output)
        self.assertIn('1 grid(s) have issues', output)
        self.assertIn('- "broken"', output)

    def test_unknown_system(self):
        """Test unknown system key"""
        with self.assertRaises(CommandError) as ctx:
            self.run_command('UNI1_ZEBRA')
        self.assertIn('uni1_zebra, mini_roll', str(ctx.exception))

    def test_data_path_option(self):
        """Test checking another coefficients file"""
        with tempfile.TemporaryDirectory() as tmp:
            path = write_json(tmp, TestDataFactory.dataset_payload({'file_sys': {'E': TestDataFactory.grid_payload()}}))
            output = self.run_command('--data-path', str(path))
        self.assertIn('Total systems: 1', output)
        self.assertIn('file_sys', output)
        self.assertNotIn('mini_roll', output)
