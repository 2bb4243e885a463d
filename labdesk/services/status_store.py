"""Durable per-appointment status overrides.

One JSON record per appointment id under a fixed key prefix. Writes are
last-write-wins with no locking, which assumes a single active session per
appointment. Absent or malformed records read as "no override".
"""

import os
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from labdesk.models.appointment import PersistedStatusRecord
from labdesk.utils.logging import get_logger

logger = get_logger(__name__)

STORAGE_KEY_PREFIX = "appointment_status_"


def storage_key(appointment_id: str) -> str:
    return f"{STORAGE_KEY_PREFIX}{appointment_id}"


def decode_record(appointment_id: str, raw: str | None) -> PersistedStatusRecord | None:
    """Parse a stored record, treating anything unreadable as absent."""
    if raw is None:
        return None

    try:
        record = PersistedStatusRecord.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed status record for appointment {appointment_id}: {e}")
        return None

    if record.appointment_id != appointment_id:
        logger.warning(f"Ignoring status record stored under {appointment_id} for {record.appointment_id}")
        return None

    return record


class StatusStore(Protocol):
    """Interface for status override storage."""

    def load(self, appointment_id: str) -> PersistedStatusRecord | None:
        """Stored override for the appointment, None when absent or unreadable."""
        ...

    def save(self, record: PersistedStatusRecord) -> None:
        """Create or overwrite the override for record.appointment_id."""
        ...

    def clear(self, appointment_id: str) -> bool:
        """Remove the override.

        Returns:
            True if a record was removed, False if none existed
        """
        ...


class InMemoryStatusStore:
    """Status store kept in process memory, holding the same JSON as the file store."""

    def __init__(self):
        self.records: dict[str, str] = {}

    def load(self, appointment_id: str) -> PersistedStatusRecord | None:
        return decode_record(appointment_id, self.records.get(storage_key(appointment_id)))

    def save(self, record: PersistedStatusRecord) -> None:
        self.records[storage_key(record.appointment_id)] = record.model_dump_json(by_alias=True)
        logger.info(f"Saved status {record.status} (step {record.current_step}) for appointment {record.appointment_id}")

    def clear(self, appointment_id: str) -> bool:
        return self.records.pop(storage_key(appointment_id), None) is not None


class FileStatusStore:
    """Status store writing one JSON file per appointment into a directory."""

    def __init__(self, directory: str | Path | None = None):
        """Initialize the store.

        Args:
            directory: Target directory (defaults to LABDESK_STATUS_DIR or ./.labdesk/status)
        """
        self.directory = Path(directory or os.getenv("LABDESK_STATUS_DIR", ".labdesk/status"))
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, appointment_id: str) -> Path:
        return self.directory / f"{storage_key(appointment_id)}.json"

    def load(self, appointment_id: str) -> PersistedStatusRecord | None:
        path = self._path(appointment_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read status record {path}: {e}")
            return None

        return decode_record(appointment_id, raw)

    def save(self, record: PersistedStatusRecord) -> None:
        path = self._path(record.appointment_id)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(record.model_dump_json(by_alias=True), encoding="utf-8")
        tmp_path.replace(path)
        logger.info(f"Saved status {record.status} (step {record.current_step}) for appointment {record.appointment_id}")

    def clear(self, appointment_id: str) -> bool:
        try:
            self._path(appointment_id).unlink()
        except FileNotFoundError:
            return False

        logger.info(f"Cleared stored status for appointment {appointment_id}")
        return True
