"""
Compliance Service — Immutable, hash-chained compliance trail per session.
"""
from typing import Optional, Dict

from offramp.models import ComplianceLog
from offramp.storage.base import Storage
from offramp.utils.hashing import generate_chain_hash
from offramp.utils.timeutils import utcnow


class ComplianceService:
    """Creates tamper-evident compliance entries with hash chaining."""

    @staticmethod
    def log(
        storage: Storage,
        session_id: str,
        action: str,
        payload: Optional[Dict] = None,
        partner_id: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> ComplianceLog:
        """Append a compliance entry linked to the previous one for the session.

        Args:
            storage: Storage handle.
            session_id: Off-ramp session this action belongs to.
            action: Action identifier (e.g. PAN_VERIFICATION, PAYOUT_SETTLED).
            payload: Data payload to hash. Must not contain raw identifiers.
            partner_id: Owning partner.
            metadata: Additional metadata to store alongside the hash.

        Returns:
            The created ComplianceLog entry.
        """
        last_entry = storage.last_compliance_log(session_id)
        previous_hash = last_entry.payload_hash if last_entry else ""

        entry = ComplianceLog(
            session_id=session_id,
            partner_id=partner_id,
            action=action,
            payload_hash=generate_chain_hash(payload or {}, previous_hash),
            previous_hash=previous_hash,
            log_metadata=metadata or {},
            timestamp=utcnow(),
        )
        return storage.add(entry)

    @staticmethod
    def get_trail(storage: Storage, session_id: str) -> list[ComplianceLog]:
        """Full trail for a session, oldest first."""
        return list(storage.compliance_trail(session_id))

    @staticmethod
    def verify_chain(storage: Storage, session_id: str) -> dict:
        """Verify the integrity of the compliance chain for a session.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = list(storage.compliance_trail(session_id))

        if not entries:
            return {"valid": True, "total_entries": 0, "broken_at": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].payload_hash if i > 0 else ""
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Chain broken at entry {entry.id} ({entry.action})",
                }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
