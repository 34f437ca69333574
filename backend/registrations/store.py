"""In-memory registration store mirrored to a single JSON file.

The list in memory is authoritative. Every mutation marks the store dirty and
(re)starts a short timer; when the timer fires the whole list is written back
to disk, so a burst of submissions collapses into one write. `flush()` writes
immediately and is what the shutdown hooks call.
"""
import atexit
import copy
import json
import logging
import os
import signal
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class RegistrationStore:
    def __init__(self, path, save_delay: float = 0.2) -> None:
        self.path = Path(path)
        self.save_delay = save_delay
        self._records: List[Record] = []
        self._dirty = False
        self._timer: Optional[threading.Timer] = None
        # Reentrant: the shutdown signal handler runs on the main thread and may
        # interrupt a method that already holds the lock.
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def load(self) -> None:
        """Read the mirror file. Never fails: anything unusable means an empty store."""
        records: List[Record] = []
        try:
            raw = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            logger.info('No previous data found at %s, starting fresh.', self.path)
        except OSError as exc:
            logger.error('Could not read %s: %s', self.path, exc)
        else:
            try:
                data = json.loads(raw)
            except ValueError as exc:
                logger.error('Registrations file %s is not valid JSON: %s', self.path, exc)
            else:
                if isinstance(data, list):
                    records = [item for item in data if isinstance(item, dict)]
                    if len(records) != len(data):
                        logger.warning('Skipped %d malformed entries in %s', len(data) - len(records), self.path)
                else:
                    logger.error('Registrations file %s does not hold a list, ignoring it.', self.path)

        with self._lock:
            self._records = records
            self._dirty = False
        logger.info('Loaded %d registrations from %s.', len(records), self.path)

    def append(self, record: Record) -> None:
        with self._lock:
            self._records.append(dict(record))
            self._dirty = True
        self.persist()

    def clear(self) -> None:
        with self._lock:
            self._records = []
            self._dirty = True
        self.persist()

    def list(self) -> List[Record]:
        with self._lock:
            return copy.deepcopy(self._records)

    def persist(self) -> None:
        """Schedule a debounced flush, restarting the quiet period."""
        if self.save_delay <= 0:
            self.flush()
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.save_delay, self._on_timer)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        self.flush()

    def cancel_pending(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self, force: bool = False) -> bool:
        """Write the whole list to disk now if dirty (or forced).

        Returns True when a file was written. Errors are logged and leave the
        store dirty so a later flush retries the write.
        """
        with self._lock:
            if not (self._dirty or force):
                return False
            payload = json.dumps(self._records, indent=2, ensure_ascii=False)
            self._dirty = False

        tmp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding='utf-8')
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.error('Failed saving registrations to %s: %s', self.path, exc)
            with self._lock:
                self._dirty = True
            return False
        logger.info('Registrations saved to %s.', self.path)
        return True

    def install_shutdown_hooks(self) -> None:
        """Flush on interpreter exit and on SIGINT/SIGTERM."""
        atexit.register(self.flush)
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous = signal.getsignal(signum)
            signal.signal(signum, self._make_signal_handler(previous))

    def _make_signal_handler(self, previous):
        def handler(signum, frame):
            logger.info('%s received, saving data...', signal.Signals(signum).name)
            self.cancel_pending()
            self.flush(force=True)
            if callable(previous):
                previous(signum, frame)
            elif previous == signal.SIG_DFL:
                signal.signal(signum, signal.SIG_DFL)
                signal.raise_signal(signum)
        return handler


_store: Optional[RegistrationStore] = None


def get_store() -> RegistrationStore:
    global _store
    if _store is None:
        from django.conf import settings

        _store = RegistrationStore(settings.REGISTRATIONS_DATA_FILE, settings.REGISTRATIONS_SAVE_DELAY)
        _store.load()
    return _store


def set_store(store: Optional[RegistrationStore]) -> Optional[RegistrationStore]:
    """Replace the process-wide store, returning the previous one."""
    global _store
    previous, _store = _store, store
    return previous
