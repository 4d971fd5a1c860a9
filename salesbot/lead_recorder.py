# salesbot/lead_recorder.py
"""
Lead Recorder (Airtable)
------------------------
Persists qualified contacts captured by the script engine.
• One row per conversation: existing chat_id row is overwritten, otherwise appended
• Header fields are ensured before the first write
• Every failure surfaces as RecorderError; callers decide whether it is fatal
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pyairtable import Api
from pyairtable.formulas import match

from salesbot.runtime import get_logger

logger = get_logger("lead_recorder")

SHEET_HEADERS = ("timestamp", "client_name", "tg_contact", "chat_id", "status", "manager")
HEADER_FIELD_TYPE = "singleLineText"
STATUS_PROCESSED = "processed"
STATUS_TEST = "test"


# -----------------------------
# Errors / records
# -----------------------------
class RecorderError(RuntimeError):
    """Lead could not be persisted."""


@dataclass(frozen=True)
class LeadRecord:
    timestamp: str
    client_name: str
    contact: str
    conversation_id: Any
    status: str
    agent: str

    def as_fields(self) -> Dict[str, str]:
        values = (
            self.timestamp,
            self.client_name,
            self.contact,
            str(self.conversation_id),
            self.status,
            self.agent,
        )
        return dict(zip(SHEET_HEADERS, (str(v or "") for v in values)))


# -----------------------------
# Recorder
# -----------------------------
class AirtableLeadRecorder:
    """Upserts LeadRecords into one Airtable table keyed by chat_id."""

    def __init__(
        self,
        table: Any = None,
        *,
        api_key: Optional[str] = None,
        base_id: Optional[str] = None,
        table_name: str = "Leads",
    ):
        self._table = table
        self.api_key = api_key
        self.base_id = base_id
        self.table_name = table_name
        self._header_ok = False

    @classmethod
    def from_settings(cls, s) -> "AirtableLeadRecorder":
        return cls(api_key=s.AIRTABLE_API_KEY, base_id=s.LEADS_BASE, table_name=s.LEADS_TABLE)

    @property
    def configured(self) -> bool:
        return self._table is not None or bool(self.api_key and self.base_id)

    def _tbl(self):
        if self._table is None:
            if not (self.api_key and self.base_id):
                raise RecorderError(
                    f"Airtable not configured (api_key={bool(self.api_key)}, base={bool(self.base_id)})"
                )
            self._table = Api(self.api_key).table(self.base_id, self.table_name)
        return self._table

    def ensure_header(self) -> None:
        """Create any of the fixed header fields the table is missing."""
        if self._header_ok:
            return
        tbl = self._tbl()
        existing = {str(f.name).strip().lower() for f in tbl.schema().fields}
        for name in SHEET_HEADERS:
            if name not in existing:
                tbl.create_field(name, HEADER_FIELD_TYPE)
                logger.info(f"🧱 Created missing field '{name}' in {self.table_name}")
        self._header_ok = True

    def find_row(self, conversation_id: Any) -> Optional[Dict[str, Any]]:
        return self._tbl().first(formula=match({"chat_id": str(conversation_id)}))

    def upsert(self, record: LeadRecord) -> Dict[str, Any]:
        fields = record.as_fields()
        try:
            self.ensure_header()
            tbl = self._tbl()
            row = self.find_row(record.conversation_id)
            if row:
                result = tbl.update(row["id"], fields, typecast=True)
                action = "updated"
            else:
                result = tbl.create(fields, typecast=True)
                action = "created"
        except RecorderError:
            raise
        except Exception as e:
            raise RecorderError(f"Lead upsert failed for chat {record.conversation_id}: {e}") from e

        logger.info(f"📝 Lead {action}: chat={record.conversation_id} status={record.status}")
        return {"ok": True, "action": action, "id": (result or {}).get("id")}


__all__ = ["AirtableLeadRecorder", "LeadRecord", "RecorderError", "SHEET_HEADERS", "STATUS_PROCESSED", "STATUS_TEST"]
