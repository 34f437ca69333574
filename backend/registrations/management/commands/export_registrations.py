from django.conf import settings
from django.core.management.base import BaseCommand

from registrations.store import get_store
from registrations.utils_export import save_export


class Command(BaseCommand):
    help = 'Save an Excel export of all registrations into the exports folder.'

    def add_arguments(self, parser):
        parser.add_argument('--out-dir', default=None,
                            help='Directory to write into (default: EXPORTS_DIR).')

    def handle(self, *args, **options):
        out_dir = options['out_dir'] or settings.EXPORTS_DIR
        records = get_store().list()
        dest = save_export(records, out_dir)
        self.stdout.write(self.style.SUCCESS(f'Exported {len(records)} registrations to {dest}'))
