"""
Salesbot Package Init
---------------------
Scripted outbound-sales dialogues over Telegram with Airtable lead capture.
"""

from .config import settings

__all__ = ["settings"]
