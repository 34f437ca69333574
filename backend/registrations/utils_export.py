import io
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List

from django.utils import timezone
from openpyxl import Workbook, load_workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.drawing.image import Image as OpenpyxlImage
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.cell import coordinate_from_string
from PIL import Image as PILImage

from .serializers import RECORD_FIELDS
from .signature import decode_signature

logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
EXPORT_FILENAME = 'registrations.xlsx'
SHEET_TITLE = 'Registrations'

HEADERS = [
    'Name', 'Grade', 'Section', 'LRN', 'Emergency',
    'Address', 'Contact', 'Birthdate', 'Condition',
    'Signature', 'Image Code', 'Entry Time',
]
SIGNATURE_COLUMN = RECORD_FIELDS.index('signature') + 1  # J
SIGNATURE_COLUMN_WIDTH = 30
MIN_COLUMN_WIDTH = 12
HEADER_ROW_HEIGHT = 25
DATA_ROW_HEIGHT = 80


def get_column_width_pixels(ws, col_letter: str) -> int:
    # Common heuristic: pixels = int(width * 7 + 5)
    default_width = getattr(ws.sheet_format, 'defaultColWidth', None) or 8.43
    cd = ws.column_dimensions.get(col_letter)
    width = getattr(cd, 'width', None) or default_width
    return max(int(float(width) * 7 + 5), 20)


def get_row_height_pixels(ws, row_idx: int) -> int:
    # row height is in points; pixels = points * 96/72
    default_height = getattr(ws.sheet_format, 'defaultRowHeight', None) or 15
    rd = ws.row_dimensions.get(row_idx)
    height = getattr(rd, 'height', None) or default_height
    return max(int(float(height) * 96.0 / 72.0), 12)


def _cell_value(value):
    """Text safe for a worksheet cell: control characters dropped, non-scalars stringified."""
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        value = json.dumps(value, ensure_ascii=False)
    elif not isinstance(value, str):
        value = str(value)
    return ILLEGAL_CHARACTERS_RE.sub('', value)


def _signature_image(data_url: str, width: int, height: int) -> OpenpyxlImage:
    """Decode a signature data URL into an openpyxl image sized to the cell box."""
    with PILImage.open(io.BytesIO(decode_signature(data_url))) as pil_img:
        pil_img.load()
        png = io.BytesIO()
        pil_img.save(png, format='PNG')
    png.seek(0)
    ximg = OpenpyxlImage(png)
    ximg.width = width
    ximg.height = height
    return ximg


def _write_header(ws) -> None:
    ws.append(HEADERS)
    header_font = Font(bold=True, color='FFFFFFFF')
    header_fill = PatternFill(fill_type='solid', start_color='FF1976D2', end_color='FF1976D2')
    header_alignment = Alignment(horizontal='center', vertical='center')
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
    ws.row_dimensions[1].height = HEADER_ROW_HEIGHT


def _autosize_columns(ws) -> None:
    for col_idx in range(1, len(HEADERS) + 1):
        col_letter = get_column_letter(col_idx)
        if col_idx == SIGNATURE_COLUMN:
            ws.column_dimensions[col_letter].width = SIGNATURE_COLUMN_WIDTH
            continue
        longest = MIN_COLUMN_WIDTH
        for (value,) in ws.iter_rows(min_col=col_idx, max_col=col_idx, values_only=True):
            if value is not None:
                longest = max(longest, len(str(value)))
        ws.column_dimensions[col_letter].width = longest + 2


def build_registrations_workbook(records: Iterable[Dict]) -> io.BytesIO:
    """Build an Excel workbook (in-memory) of the given registrations.

    One row per record in the order given. A record's signature is decoded and
    anchored as an image in its row's Signature cell; a signature that cannot be
    decoded is logged and left out without stopping the export.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    _write_header(ws)

    # Signature column must be sized before image boxes are measured.
    sig_letter = get_column_letter(SIGNATURE_COLUMN)
    ws.column_dimensions[sig_letter].width = SIGNATURE_COLUMN_WIDTH

    row = 2
    for record in records:
        values = [_cell_value(record.get(field)) for field in RECORD_FIELDS]
        values[SIGNATURE_COLUMN - 1] = None
        ws.append(values)
        ws.row_dimensions[row].height = DATA_ROW_HEIGHT

        signature = record.get('signature')
        if signature:
            try:
                ximg = _signature_image(
                    signature,
                    get_column_width_pixels(ws, sig_letter),
                    get_row_height_pixels(ws, row),
                )
                ws.add_image(ximg, f'{sig_letter}{row}')
            except Exception:
                logger.exception('Failed to insert signature image for row %d', row)
        row += 1

    _autosize_columns(ws)

    bio = io.BytesIO()
    wb.save(bio)
    bio.seek(0)
    return bio


def save_export(records: Iterable[Dict], out_dir) -> Path:
    """Write an export workbook into `out_dir` and return its path."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    filename = f"registrations_export_{timezone.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
    dest_path = out_dir / filename
    dest_path.write_bytes(build_registrations_workbook(records).getvalue())
    logger.info('Export saved to %s', dest_path)
    return dest_path


def latest_export(exports_dir) -> Path:
    exports_dir = Path(exports_dir)
    files = sorted(exports_dir.glob('*.xlsx'), key=lambda p: p.stat().st_mtime, reverse=True) \
        if exports_dir.is_dir() else []
    if not files:
        raise FileNotFoundError(f'No exports found in {exports_dir}')
    return files[0]


def summarize_workbook(source) -> Dict:
    """Describe a saved export: sheet title, headers, data rows and image anchors."""
    wb = load_workbook(source)
    ws = wb.worksheets[0]
    headers: List = [cell.value for cell in ws[1]]
    anchors = []
    # openpyxl keeps loaded drawings on the private _images list; there is no public accessor.
    for img in ws._images:
        marker = img.anchor._from
        anchors.append(f'{get_column_letter(marker.col + 1)}{marker.row + 1}')
    return {
        'sheet': ws.title,
        'headers': headers,
        'rows': ws.max_row - 1,
        'image_anchors': sorted(anchors, key=lambda a: coordinate_from_string(a)[1]),
    }
