"""
Audit log for ledger-mutating submissions.

The remote ledger is the durable record of state; this log is the durable
record of what this tool attempted. Every submitted action, confirmed or
failed, is appended as one JSON line.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_AUDIT_DIR = ".ledgersync"
AUDIT_FILENAME = "audit.log"


@dataclass
class AuditEntry:
    """A single audit log entry."""
    timestamp: str
    operation: str  # action kind
    address: str
    outcome: str  # "confirmed" | "failed"
    transaction_id: str | None = None
    cause: str | None = None
    detail: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "address": self.address,
            "outcome": self.outcome,
            "transaction_id": self.transaction_id,
            "cause": self.cause,
            "detail": self.detail,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        """Create from dictionary."""
        return cls(
            timestamp=data["timestamp"],
            operation=data["operation"],
            address=data.get("address", ""),
            outcome=data.get("outcome", ""),
            transaction_id=data.get("transaction_id"),
            cause=data.get("cause"),
            detail=data.get("detail", ""),
            metadata=data.get("metadata", {}),
        )


def default_audit_log_path(config_path: Path) -> Path:
    """Audit log lives next to the config file."""
    return config_path.resolve().parent / DEFAULT_AUDIT_DIR / AUDIT_FILENAME


def log_submission(
    log_path: Path,
    operation: str,
    address: str,
    result: dict[str, Any],
    metadata: dict[str, Any] | None = None,
) -> AuditEntry:
    """
    Append one submission outcome to the audit log.

    Args:
        log_path: Path to the audit log file
        operation: Action kind (e.g., "initialize", "close")
        address: Address the action targeted
        result: Serialized execution result (``Confirmed.to_dict()`` / ``Failed.to_dict()``)
        metadata: Additional context (e.g., changed fields, instruction name)

    Returns:
        The created audit entry
    """
    entry = AuditEntry(
        timestamp=datetime.now(timezone.utc).isoformat(),
        operation=operation,
        address=address,
        outcome=str(result.get("outcome", "")),
        transaction_id=result.get("transaction_id"),
        cause=result.get("cause"),
        detail=str(result.get("detail", "") or ""),
        metadata=metadata or {},
    )

    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Append as JSON Lines format (one JSON object per line)
    with log_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry.to_dict()) + "\n")

    return entry


def read_audit_log(log_path: Path, last_n: int | None = None) -> list[AuditEntry]:
    """
    Read entries from the audit log.

    Args:
        log_path: Path to the audit log file
        last_n: If specified, return only the last N entries

    Returns:
        List of audit entries (oldest first)
    """
    if not log_path.exists():
        return []

    entries = []
    with log_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    data = json.loads(line)
                    entries.append(AuditEntry.from_dict(data))
                except (json.JSONDecodeError, KeyError):
                    continue  # Skip malformed lines

    if last_n is not None:
        return entries[-last_n:]
    return entries


def format_audit_entry(entry: AuditEntry) -> str:
    """Format an audit entry for human-readable display."""
    lines = [
        f"[{entry.timestamp}] {entry.operation} {entry.address}: {entry.outcome}",
    ]
    if entry.transaction_id:
        lines.append(f"  Transaction: {entry.transaction_id}")
    if entry.cause:
        lines.append(f"  Cause: {entry.cause}")
    if entry.detail:
        lines.append(f"  Detail: {entry.detail}")
    for key, value in entry.metadata.items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines)
