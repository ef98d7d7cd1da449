"""
Django management command to inspect the systems and fabric categories
available in the coefficient data file

Usage:
    python manage.py check_coefficients              # all systems
    python manage.py check_coefficients uni1_zebra   # categories of uni1_zebra
"""
from django.core.management.base import BaseCommand, CommandError
from backend.coefficients.dataset import load_dataset
from backend.coefficients.registry import get_resolver, build_resolver


def format_table(headers, rows):
    """Render rows as a box-drawn table, returns the lines"""
    widths = [
        max([len(header)] + [len(row[i]) for row in rows])
        for i, header in enumerate(headers)
    ]
    separator = '┼'.join('─' * (w + 2) for w in widths)

    def render(cells):
        return '│ ' + ' │ '.join(cell.ljust(widths[i]) for i, cell in enumerate(cells)) + ' │'

    lines = ['┌' + separator.replace('┼', '┬') + '┐', render(headers), '├' + separator + '┤']
    lines.extend(render(row) for row in rows)
    lines.append('└' + separator.replace('┼', '┴') + '┘')
    return lines


def format_range(value_range):
    if value_range is None:
        return '-'
    return f"{value_range['min']}m - {value_range['max']}m"


class Command(BaseCommand):
    help = 'Show systems and fabric categories available in the coefficient data'

    def add_arguments(self, parser):
        parser.add_argument(
            'system_key',
            nargs='?',
            help='Show categories of this system (exact key)',
        )
        parser.add_argument(
            '--data-path',
            help='Check this coefficients file instead of the loaded one',
        )

    def handle(self, *args, **options):
        system_key = options.get('system_key')
        data_path = options.get('data_path')

        if data_path:
            resolver = build_resolver(load_dataset(data_path))
        else:
            resolver = get_resolver()

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS("COEFFICIENT DATA CHECK"))
        self.stdout.write("=" * 80)

        if system_key:
            self.show_categories(resolver, system_key)
        else:
            self.show_systems(resolver)

    def show_systems(self, resolver):
        systems = resolver.get_available_systems()
        self.stdout.write("")
        self.stdout.write(f"Total systems: {len(systems)}")
        self.stdout.write("")

        rows = [
            [str(index), key, str(len(resolver.get_system_categories(key)))]
            for index, key in enumerate(systems, start=1)
        ]
        for line in format_table(['#', 'System Key', 'Categories'], rows):
            self.stdout.write(line)

        self.stdout.write("")
        self.stdout.write("To see the categories of a system:")
        self.stdout.write("  python manage.py check_coefficients <system_key>")

    def show_categories(self, resolver, system_key):
        if system_key not in resolver.get_available_systems():
            available = ', '.join(resolver.get_available_systems()) or 'none'
            raise CommandError(f'System "{system_key}" not found. Available systems: {available}')

        product = resolver.dataset.products[system_key]
        categories = resolver.get_system_categories(system_key)
        self.stdout.write("")
        self.stdout.write(f'Categories for system "{system_key}": {len(categories)}')
        self.stdout.write("")

        rows = []
        broken = 0
        for index, category in enumerate(categories, start=1):
            grid = product.categories[category]
            ranges = resolver.get_coefficient_ranges(system_key, category)
            problems = grid.issues()
            if problems:
                broken += 1
            rows.append([
                str(index),
                category,
                format_range(ranges['width_range']),
                format_range(ranges['height_range']),
                str(len(grid.widths or ())),
                str(len(grid.heights or ())),
                '; '.join(problems) or 'OK',
            ])
        for line in format_table(
            ['#', 'Category', 'Width range', 'Height range', 'Width points', 'Height points', 'Status'],
            rows
        ):
            self.stdout.write(line)

        self.stdout.write("")
        if broken:
            self.stdout.write(self.style.WARNING(f"⚠️  {broken} grid(s) have issues, lookups on them may return no coefficient"))
        self.stdout.write(self.style.SUCCESS("System setup:"))
        self.stdout.write(f'  Set System Key = "{system_key}" on the system in the catalog')
        self.stdout.write(self.style.SUCCESS("Fabric setup:"))
        self.stdout.write("  Use one of these categories on the fabric:")
        for category in categories:
            self.stdout.write(f'    - "{category}"')
