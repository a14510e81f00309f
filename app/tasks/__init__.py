"""Operational tasks for the consent service.

- One-time import of legacy verbal consents into the consent ledger
"""

from app.tasks.import_legacy_consents import run_import_task

__all__ = [
    "run_import_task",
]
