"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every accepted or rejected vault operation is recorded here.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    VAULT_CREATED = "vault_created"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_FAILED = "withdrawal_failed"
    DIRECT_DEPOSIT_REJECTED = "direct_deposit_rejected"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    account: str          # Account the event applies to (deployer for vault events)
    sequence: int         # Position in the chain, starting at 1
    previous_hash: str    # Hash of previous audit event for chaining
    current_hash: str     # SHA-256 hash of this event
    metadata: Dict[str, Any]

    def __post_init__(self):
        if self.metadata:
            self.metadata = {k: _to_json_value(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'account': self.account,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


def _to_json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _to_json_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    return value


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "vault_audit"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()
        self._last_hash = ""
        self._sequence = 0
        self._load_chain_head()

    def _load_chain_head(self) -> None:
        """Load sequence and hash of the most recent audit event"""
        events = self.storage.load_all(self.table_name)
        if events:
            head = max(events, key=lambda e: e.get('sequence', 0))
            self._sequence = head['sequence']
            self._last_hash = head['current_hash']

    def log_event(
        self,
        event_type: AuditEventType,
        account: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        """
        Append an audit event to the chain

        Args:
            event_type: Type of audit event
            account: Account the event applies to
            metadata: Additional event-specific data

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                account=account,
                sequence=self._sequence + 1,
                previous_hash=self._last_hash,
                current_hash="",
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())

            self._sequence = event.sequence
            self._last_hash = event.current_hash

            return event

    def get_all_events(self) -> List[AuditEvent]:
        """All audit events in chain order"""
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def get_events_for_account(self, account: str, limit: Optional[int] = None) -> List[AuditEvent]:
        """
        Get audit events for an account in chain order

        Args:
            account: Account identity
            limit: Maximum number of (most recent) events to return
        """
        events = [e for e in self.get_all_events() if e.account == account]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self.get_all_events() if e.event_type == event_type]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)

    def get_latest_hash(self) -> str:
        return self._last_hash
