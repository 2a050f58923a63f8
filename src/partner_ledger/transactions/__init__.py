from __future__ import annotations

from .enums import IncidentKind, TransactionStatus, TransactionType
from .incidents import Incident, IncidentReporter, LoggingIncidentReporter
from .models import TransactionRequest
from .workflow import ApprovalWorkflow

__all__ = [
    "ApprovalWorkflow",
    "Incident",
    "IncidentKind",
    "IncidentReporter",
    "LoggingIncidentReporter",
    "TransactionRequest",
    "TransactionStatus",
    "TransactionType",
]
