"""
Packet Library Module

This module keeps the 25 named packet presets an operator can
save and reuse for manual sends or new jobs.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
from threading import Lock

## import private pkgs
from Errors import ValidationError
from Validate import to_int, clamp_bytes

## number of preset slots
SLOT_COUNT = 25
NAME_MAX = 64
NOTE_MAX = 256

def empty_slots() -> list:
    return [{'slot': i + 1, 'name': '', 'note': '', 'bytes': []} for i in range(SLOT_COUNT)]

class PacketLibrary(object):
    """
    Fixed size table of packet presets.

    Every change is written through the store and published as a
    packets_update event.
    """

    def __init__(self, logger: object, store: object, notifier: object) -> None:
        self.logger = logger
        self.store = store
        self.notifier = notifier
        self._slots = empty_slots()
        self._lock = Lock()

    def load(self) -> None:
        """
        Load saved slots, unknown slot numbers are ignored.

        Returns:
            None
        """

        slots = empty_slots()
        for saved in self.store.load_packets():
            idx = to_int(saved.get('slot')) - 1
            if not 0 <= idx < SLOT_COUNT:
                continue

            slots[idx]['name'] = str(saved.get('name') or '')[:NAME_MAX]
            slots[idx]['note'] = str(saved.get('note') or '')[:NOTE_MAX]
            slots[idx]['bytes'] = clamp_bytes(saved.get('bytes')) or []

        with self._lock:
            self._slots = slots

    def snapshot(self) -> dict:
        with self._lock:
            return {'slots': [dict(s, bytes = list(s['bytes'])) for s in self._slots]}

    def save_slot(self, slot, name, note, values) -> None:
        """
        Store a preset.

        Args:
            slot (int): Slot number 1..25
            name (str): Display name, cut to 64 characters
            note (str): Free text, cut to 256 characters
            values (list): Bytes 0..255, may be empty

        Raises:
            ValidationError: On a bad slot number or bad bytes
        """

        idx = self._index(slot)
        payload = clamp_bytes(values)
        if payload is None:
            raise ValidationError('Invalid bytes.')

        with self._lock:
            self._slots[idx]['name'] = str(name or '')[:NAME_MAX]
            self._slots[idx]['note'] = str(note or '')[:NOTE_MAX]
            self._slots[idx]['bytes'] = payload

        self._commit()

    def delete_slot(self, slot) -> None:
        idx = self._index(slot)
        with self._lock:
            self._slots[idx].update(name = '', note = '', bytes = [])

        self._commit()

    def get(self, slot) -> dict:
        idx = self._index(slot)
        with self._lock:
            return dict(self._slots[idx], bytes = list(self._slots[idx]['bytes']))

    @staticmethod
    def _index(slot) -> int:
        n = to_int(slot)
        if n < 1 or n > SLOT_COUNT:
            raise ValidationError('Slot must be 1..25.')

        return n - 1

    def _commit(self) -> None:
        snapshot = self.snapshot()
        self.store.save_packets(snapshot['slots'])
        self.notifier.publish({'type': 'packets_update', 'packets': snapshot})
