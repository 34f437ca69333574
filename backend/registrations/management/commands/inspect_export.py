from pathlib import Path

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from registrations.utils_export import latest_export, summarize_workbook


class Command(BaseCommand):
    help = 'Summarize a saved registrations export (defaults to the newest one in EXPORTS_DIR).'

    def add_arguments(self, parser):
        parser.add_argument('path', nargs='?', help='Workbook to inspect.')

    def handle(self, *args, **options):
        if options['path']:
            path = Path(options['path'])
            if not path.exists():
                raise CommandError(f'File not found: {path}')
        else:
            try:
                path = latest_export(settings.EXPORTS_DIR)
            except FileNotFoundError as exc:
                raise CommandError(str(exc))

        self.stdout.write(f'Inspecting export: {path}')
        try:
            summary = summarize_workbook(str(path))
        except Exception as exc:
            raise CommandError(f'Failed to open workbook: {exc}')

        self.stdout.write(f"Sheet: {summary['sheet']}")
        self.stdout.write('Headers: ' + ', '.join(str(h) for h in summary['headers']))
        self.stdout.write(f"Registrations: {summary['rows']}")
        anchors = summary['image_anchors']
        self.stdout.write(f"Signature images: {len(anchors)}" + (f" ({', '.join(anchors)})" if anchors else ''))
