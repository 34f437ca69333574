import base64
import io
import json
import signal
import tempfile
import time
from pathlib import Path
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, override_settings
from openpyxl import load_workbook
from PIL import Image
from rest_framework.test import APIClient

from .exceptions import SignatureError, SignaturePadConfigError
from .signature import (
	SignaturePad, Surface, decode_signature, encode_png_data_url, normalize_signature,
)
from .store import RegistrationStore, set_store
from .utils_export import build_registrations_workbook, summarize_workbook

ADMIN_PIN = '4321'


def png_base64(size=(40, 20), color=(0, 0, 0)):
	buf = io.BytesIO()
	Image.new('RGB', size, color).save(buf, format='PNG')
	return base64.b64encode(buf.getvalue()).decode('ascii')


def basic_auth(password, username='admin'):
	token = base64.b64encode(f'{username}:{password}'.encode()).decode()
	return f'Basic {token}'


class StoreSwapMixin:
	"""Point the API at a fresh store backed by a temp directory."""

	save_delay = 0

	def setUp(self):
		super().setUp()
		self._tmp = tempfile.TemporaryDirectory()
		self.tmp_dir = Path(self._tmp.name)
		self.store = RegistrationStore(self.tmp_dir / 'registrations.json', save_delay=self.save_delay)
		self._previous_store = set_store(self.store)

	def tearDown(self):
		self.store.cancel_pending()
		set_store(self._previous_store)
		self._tmp.cleanup()
		super().tearDown()


@override_settings(ADMIN_PIN=ADMIN_PIN)
class RegistrationAPITestCase(StoreSwapMixin, SimpleTestCase):
	def setUp(self):
		super().setUp()
		self.client = APIClient()

	def admin_client(self):
		client = APIClient()
		client.credentials(HTTP_AUTHORIZATION=basic_auth(ADMIN_PIN))
		return client

	def test_register_fills_entry_time(self):
		res = self.client.post('/api/register', {'name': 'Jane Doe', 'grade': '5', 'signature': ''}, format='json')
		self.assertEqual(res.status_code, 200)
		self.assertEqual(res.json(), {'success': True})
		self.assertEqual(len(self.store), 1)
		record = self.store.list()[0]
		self.assertEqual(record['name'], 'Jane Doe')
		self.assertEqual(record['grade'], '5')
		self.assertEqual(record['signature'], '')
		self.assertTrue(record['entryTime'])

	def test_register_keeps_client_entry_time(self):
		self.client.post('/api/register', {'name': 'A', 'entryTime': '10/19/2026, 8:00:00 AM'}, format='json')
		self.assertEqual(self.store.list()[0]['entryTime'], '10/19/2026, 8:00:00 AM')

	def test_register_persists_to_disk(self):
		self.client.post('/api/register', {'name': 'On Disk'}, format='json')
		saved = json.loads((self.tmp_dir / 'registrations.json').read_text(encoding='utf-8'))
		self.assertEqual([r['name'] for r in saved], ['On Disk'])

	def test_raw_base64_signatures_are_wrapped(self):
		for name in ('First', 'Second'):
			res = self.client.post('/api/register', {'name': name, 'signature': png_base64()}, format='json')
			self.assertEqual(res.status_code, 200)
		signatures = [r['signature'] for r in self.store.list()]
		self.assertEqual(len(signatures), 2)
		for sig in signatures:
			self.assertTrue(sig.startswith('data:image/png;base64,'))

	def test_signature_subtype_is_relabelled(self):
		payload = png_base64()
		self.client.post('/api/register', {'signature': f'data:image/jpeg;base64,{payload}'}, format='json')
		self.assertEqual(self.store.list()[0]['signature'], f'data:image/png;base64,{payload}')

	def test_non_image_data_url_is_rejected(self):
		res = self.client.post('/api/register', {'signature': 'data:text/plain;base64,aGVsbG8='}, format='json')
		self.assertEqual(res.status_code, 400)
		self.assertIn('signature', res.json())
		self.assertEqual(len(self.store), 0)

	def test_malformed_json_is_rejected(self):
		res = self.client.post('/api/register', '{"name": ', content_type='application/json')
		self.assertEqual(res.status_code, 400)
		self.assertEqual(len(self.store), 0)

	def test_non_object_body_is_rejected(self):
		res = self.client.post('/api/register', [{'name': 'x'}], format='json')
		self.assertEqual(res.status_code, 400)
		self.assertEqual(len(self.store), 0)

	def test_register_ignores_authorization_header(self):
		self.client.credentials(HTTP_AUTHORIZATION='Basic not-base64!')
		res = self.client.post('/api/register', {'name': 'x'}, format='json')
		self.assertEqual(res.status_code, 200)

	def test_list_returns_submissions_in_order(self):
		before = self.admin_client().get('/api/registrations').json()
		self.client.post('/api/register', {'name': 'One', 'lrn': '100'}, format='json')
		self.client.post('/api/register', {'name': 'Two', 'lrn': '100'}, format='json')
		after = self.admin_client().get('/api/registrations').json()
		self.assertEqual(len(after), len(before) + 2)
		self.assertEqual([r['name'] for r in after], ['One', 'Two'])
		self.assertEqual(after[0]['lrn'], '100')

	def test_admin_endpoints_require_credentials(self):
		for method, url in (('get', '/api/registrations'), ('delete', '/api/registrations'), ('get', '/api/export')):
			res = getattr(self.client, method)(url)
			self.assertEqual(res.status_code, 401, url)
			self.assertEqual(res['WWW-Authenticate'], 'Basic realm="Admin"')

	def test_wrong_pin_is_unauthorized(self):
		self.client.credentials(HTTP_AUTHORIZATION=basic_auth('0000'))
		res = self.client.get('/api/registrations')
		self.assertEqual(res.status_code, 401)
		self.assertIn('WWW-Authenticate', res)

	def test_username_is_ignored(self):
		self.client.credentials(HTTP_AUTHORIZATION=basic_auth(ADMIN_PIN, username='anyone'))
		res = self.client.get('/api/registrations')
		self.assertEqual(res.status_code, 200)

	def test_clear_then_list_is_empty(self):
		self.client.post('/api/register', {'name': 'A'}, format='json')
		admin = self.admin_client()
		res = admin.delete('/api/registrations')
		self.assertEqual(res.status_code, 200)
		self.assertEqual(res.json(), {'success': True})
		self.assertEqual(admin.get('/api/registrations').json(), [])

	def test_export_streams_workbook(self):
		self.client.post('/api/register', {'name': 'Signed', 'signature': png_base64()}, format='json')
		self.client.post('/api/register', {'name': 'Unsigned', 'signature': ''}, format='json')
		res = self.admin_client().get('/api/export')
		self.assertEqual(res.status_code, 200)
		self.assertEqual(res['Content-Type'], 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
		self.assertIn('attachment', res['Content-Disposition'])
		self.assertIn('registrations.xlsx', res['Content-Disposition'])
		summary = summarize_workbook(io.BytesIO(b''.join(res.streaming_content)))
		self.assertEqual(summary['rows'], 2)
		self.assertEqual(summary['image_anchors'], ['J2'])

	def test_pasted_control_characters_still_export(self):
		res = self.client.post('/api/register', {'name': 'Ann\x0bLee', 'address': 'x\x01'}, format='json')
		self.assertEqual(res.status_code, 200)
		self.assertEqual(self.store.list()[0]['name'], 'Ann\x0bLee')
		res = self.admin_client().get('/api/export')
		self.assertEqual(res.status_code, 200)
		ws = load_workbook(io.BytesIO(b''.join(res.streaming_content))).active
		self.assertEqual(ws.max_row, 2)
		self.assertEqual(ws['A2'].value, 'AnnLee')

	def test_boolean_and_number_values_are_stored_as_text(self):
		res = self.client.post('/api/register', {'condition': True, 'grade': 5, 'lrn': 1.5}, format='json')
		self.assertEqual(res.status_code, 200)
		record = self.store.list()[0]
		self.assertEqual(record['condition'], 'true')
		self.assertEqual(record['grade'], '5')
		self.assertEqual(record['lrn'], '1.5')

	def test_ping(self):
		res = self.client.get('/api/ping')
		self.assertEqual(res.status_code, 200)
		data = res.json()
		self.assertIs(data['ok'], True)
		self.assertIsInstance(data['ts'], int)


class ExportWorkbookTestCase(SimpleTestCase):
	def test_empty_store_has_only_header(self):
		wb = load_workbook(build_registrations_workbook([]))
		ws = wb.active
		self.assertEqual(ws.title, 'Registrations')
		self.assertEqual(ws.max_row, 1)
		self.assertEqual(ws['A1'].value, 'Name')
		self.assertEqual(ws['J1'].value, 'Signature')
		self.assertEqual(ws['L1'].value, 'Entry Time')
		self.assertTrue(ws['A1'].font.b)

	def test_rows_and_images(self):
		records = [
			{'name': 'Ann', 'signature': f'data:image/png;base64,{png_base64()}', 'entryTime': 't1'},
			{'name': 'Ben', 'signature': '', 'entryTime': 't2'},
			{'name': 'Cy', 'signature': f'data:image/png;base64,{png_base64(color=(9, 9, 9))}', 'entryTime': 't3'},
		]
		out = build_registrations_workbook(records)
		summary = summarize_workbook(out)
		self.assertEqual(summary['rows'], 3)
		self.assertEqual(summary['image_anchors'], ['J2', 'J4'])

		out.seek(0)
		ws = load_workbook(out).active
		self.assertEqual([ws.cell(row=r, column=1).value for r in range(2, 5)], ['Ann', 'Ben', 'Cy'])
		self.assertIsNone(ws['J2'].value)
		for r in range(2, 5):
			self.assertEqual(ws.row_dimensions[r].height, 80)

	def test_bad_signature_is_skipped(self):
		records = [
			{'name': 'Broken', 'signature': 'data:image/png;base64,bm90IGFuIGltYWdl', 'entryTime': 't1'},
			{'name': 'Fine', 'signature': f'data:image/png;base64,{png_base64()}', 'entryTime': 't2'},
		]
		with self.assertLogs('registrations.utils_export', level='ERROR'):
			summary = summarize_workbook(build_registrations_workbook(records))
		self.assertEqual(summary['rows'], 2)
		self.assertEqual(summary['image_anchors'], ['J3'])

	def test_column_widths(self):
		long_address = 'Purok 7, Barangay San Isidro, Municipality'
		out = build_registrations_workbook([{'name': 'Al', 'address': long_address, 'entryTime': 't'}])
		ws = load_workbook(out).active
		self.assertEqual(ws.column_dimensions['J'].width, 30)
		self.assertEqual(ws.column_dimensions['A'].width, 14)
		self.assertEqual(ws.column_dimensions['F'].width, len(long_address) + 2)


	def test_control_characters_and_non_text_values(self):
		records = [
			{'name': 'Ann\x0bLee', 'address': 'x\x01', 'grade': 5, 'condition': ['asthma'], 'entryTime': 't'},
		]
		ws = load_workbook(build_registrations_workbook(records)).active
		self.assertEqual(ws.max_row, 2)
		self.assertEqual(ws['A2'].value, 'AnnLee')
		self.assertEqual(ws['F2'].value, 'x')
		self.assertEqual(ws['B2'].value, '5')
		self.assertEqual(ws['I2'].value, '["asthma"]')


class SignatureNormalizationTestCase(SimpleTestCase):
	def test_empty_stays_empty(self):
		self.assertEqual(normalize_signature(''), '')
		self.assertEqual(normalize_signature(None), '')

	def test_raw_base64_is_wrapped(self):
		self.assertEqual(normalize_signature('iVBORw0KGgo='), 'data:image/png;base64,iVBORw0KGgo=')

	def test_subtype_is_renamed(self):
		self.assertEqual(normalize_signature('data:image/webp;base64,AAAA'), 'data:image/png;base64,AAAA')
		self.assertEqual(normalize_signature('data:image/svg+xml;base64,AAAA'), 'data:image/png;base64,AAAA')

	def test_idempotent(self):
		for value in ('', 'AAAA', 'data:image/jpeg;base64,AAAA', 'data:image/png;base64,AAAA'):
			once = normalize_signature(value)
			self.assertEqual(normalize_signature(once), once)

	def test_non_image_media_type_is_an_error(self):
		with self.assertRaises(SignatureError):
			normalize_signature('data:application/pdf;base64,AAAA')

	def test_decode(self):
		payload = png_base64()
		self.assertEqual(decode_signature(f'data:image/png;base64,{payload}'), base64.b64decode(payload))
		for bad in ('', 'no-comma', 'data:image/png;base64,@@@', 'data:image/png,plain'):
			with self.assertRaises(SignatureError):
				decode_signature(bad)


class SignaturePadTestCase(SimpleTestCase):
	def make_pad(self, width=400, height=200, ratio=1.0):
		return SignaturePad(Surface(width, height, ratio))

	def test_missing_surface_is_a_config_error(self):
		with self.assertLogs('registrations.signature', level='ERROR'):
			with self.assertRaises(SignaturePadConfigError):
				SignaturePad(None)

	def test_starts_white_and_scaled_by_pixel_ratio(self):
		pad = self.make_pad(400, 200, ratio=2)
		self.assertEqual(pad.size, (800, 400))
		self.assertTrue(pad.is_blank())
		self.assertEqual(pad.image.mode, 'RGB')

	def test_minimum_display_size(self):
		self.assertEqual(self.make_pad(10, 10).size, (300, 150))

	def test_state_machine(self):
		pad = self.make_pad()
		self.assertEqual(pad.state, 'idle')
		self.assertFalse(pad.move(10, 10))
		self.assertTrue(pad.is_blank())
		pad.begin(10, 10)
		self.assertEqual(pad.state, 'drawing')
		self.assertTrue(pad.move(100, 80))
		self.assertFalse(pad.is_blank())
		self.assertIn((0, 0, 0), list(pad.image.crop((52, 42, 59, 49)).getdata()))
		pad.end()
		self.assertEqual(pad.state, 'idle')
		pad.end()
		self.assertEqual(pad.state, 'idle')

	def test_clear(self):
		pad = self.make_pad()
		pad.begin(5, 5)
		pad.move(200, 100)
		pad.clear()
		self.assertTrue(pad.is_blank())
		self.assertEqual(pad.state, 'idle')

	def test_resize_only_while_visible(self):
		pad = self.make_pad()
		self.assertFalse(pad.resize(Surface(600, 300)))
		self.assertEqual(pad.size, (400, 200))

	def test_resize_rescales_drawing(self):
		pad = self.make_pad(400, 200)
		pad.show()
		pad.begin(0, 100)
		pad.move(400, 100)
		pad.end()
		self.assertTrue(pad.resize(Surface(800, 400)))
		self.assertEqual(pad.size, (800, 400))
		self.assertFalse(pad.is_blank())
		self.assertLess(sum(pad.image.getpixel((400, 200))), 3 * 128)
		self.assertEqual(pad.image.getpixel((400, 20)), (255, 255, 255))

	def test_save_produces_png_data_url(self):
		pad = self.make_pad()
		pad.begin(10, 10)
		pad.move(50, 50)
		url = pad.save()
		self.assertTrue(url.startswith('data:image/png;base64,'))
		self.assertEqual(normalize_signature(url), url)
		with Image.open(io.BytesIO(decode_signature(url))) as img:
			self.assertEqual(img.format, 'PNG')
			self.assertEqual(img.size, pad.size)
		self.assertEqual(encode_png_data_url(pad.to_png()), url)


class RegistrationStoreTestCase(StoreSwapMixin, SimpleTestCase):
	save_delay = 60

	@property
	def data_file(self):
		return self.tmp_dir / 'registrations.json'

	def test_load_missing_file(self):
		self.store.load()
		self.assertEqual(self.store.list(), [])

	def test_load_invalid_json(self):
		self.data_file.write_text('{not json', encoding='utf-8')
		with self.assertLogs('registrations.store', level='ERROR'):
			self.store.load()
		self.assertEqual(self.store.list(), [])

	def test_load_non_list(self):
		self.data_file.write_text('{"name": "x"}', encoding='utf-8')
		self.store.load()
		self.assertEqual(self.store.list(), [])

	def test_load_keeps_order_and_drops_non_objects(self):
		self.data_file.write_text(json.dumps([{'name': 'a'}, 3, {'name': 'b'}]), encoding='utf-8')
		self.store.load()
		self.assertEqual([r['name'] for r in self.store.list()], ['a', 'b'])
		self.assertFalse(self.store.dirty)

	def test_list_is_a_snapshot(self):
		self.store.append({'name': 'a'})
		snapshot = self.store.list()
		snapshot[0]['name'] = 'changed'
		snapshot.append({'name': 'b'})
		self.assertEqual(self.store.list(), [{'name': 'a'}])

	def test_mutations_are_debounced(self):
		self.store.append({'name': 'a'})
		self.store.append({'name': 'b'})
		self.store.clear()
		self.store.append({'name': 'c'})
		self.assertTrue(self.store.pending)
		self.assertTrue(self.store.dirty)
		self.assertFalse(self.data_file.exists())

		self.store.cancel_pending()
		self.assertTrue(self.store.flush())
		self.assertFalse(self.store.dirty)
		self.assertEqual(json.loads(self.data_file.read_text(encoding='utf-8')), [{'name': 'c'}])
		self.assertFalse(self.store.flush())
		self.assertTrue(self.store.flush(force=True))

	def test_timer_writes_once_quiet(self):
		store = RegistrationStore(self.data_file, save_delay=0.05)
		store.append({'name': 'a'})
		store.append({'name': 'b'})
		deadline = time.monotonic() + 5
		while not self.data_file.exists() and time.monotonic() < deadline:
			time.sleep(0.02)
		self.assertFalse(store.pending)
		self.assertEqual(len(json.loads(self.data_file.read_text(encoding='utf-8'))), 2)

	def test_write_failure_is_logged_and_store_stays_authoritative(self):
		blocker = self.tmp_dir / 'blocked'
		blocker.write_text('', encoding='utf-8')
		store = RegistrationStore(blocker / 'registrations.json', save_delay=0)
		with self.assertLogs('registrations.store', level='ERROR'):
			store.append({'name': 'kept'})
		self.assertTrue(store.dirty)
		self.assertEqual(store.list(), [{'name': 'kept'}])

	def test_load_after_flush_round_trips(self):
		self.store.append({'name': 'Ñoño', 'signature': ''})
		self.store.flush()
		fresh = RegistrationStore(self.data_file)
		fresh.load()
		self.assertEqual(fresh.list(), [{'name': 'Ñoño', 'signature': ''}])

	def test_signal_handler_flushes_while_lock_is_held(self):
		self.store.append({'name': 'late'})
		self.assertTrue(self.store.pending)
		handler = self.store._make_signal_handler(signal.SIG_IGN)
		# the signal lands while the main thread is inside a locked section
		with self.store._lock:
			handler(signal.SIGTERM, None)
		self.assertFalse(self.store.pending)
		self.assertEqual(json.loads(self.data_file.read_text(encoding='utf-8')), [{'name': 'late'}])

	def test_install_shutdown_hooks(self):
		with mock.patch('registrations.store.atexit.register') as register, \
				mock.patch('registrations.store.signal.signal') as install:
			self.store.install_shutdown_hooks()
		register.assert_called_once_with(self.store.flush)
		self.assertEqual([c.args[0] for c in install.call_args_list], [signal.SIGINT, signal.SIGTERM])


class ManagementCommandTestCase(StoreSwapMixin, SimpleTestCase):
	def test_export_then_inspect(self):
		self.store.append({'name': 'Ann', 'signature': f'data:image/png;base64,{png_base64()}', 'entryTime': 't'})
		self.store.append({'name': 'Ben', 'signature': '', 'entryTime': 't'})
		exports = self.tmp_dir / 'exports'

		out = io.StringIO()
		call_command('export_registrations', '--out-dir', str(exports), stdout=out)
		self.assertIn('Exported 2 registrations', out.getvalue())
		files = list(exports.glob('*.xlsx'))
		self.assertEqual(len(files), 1)

		with override_settings(EXPORTS_DIR=exports):
			out = io.StringIO()
			call_command('inspect_export', stdout=out)
		report = out.getvalue()
		self.assertIn('Sheet: Registrations', report)
		self.assertIn('Registrations: 2', report)
		self.assertIn('Signature images: 1 (J2)', report)

	def test_inspect_without_exports(self):
		with override_settings(EXPORTS_DIR=self.tmp_dir / 'none'):
			with self.assertRaises(CommandError):
				call_command('inspect_export', stdout=io.StringIO())
