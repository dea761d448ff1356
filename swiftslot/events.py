import json
import uuid
from datetime import datetime, timezone

SOURCE = "swiftslot"


def build_event(event_type: str, data: dict, occurred_at: datetime | None = None) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "source": SOURCE,
        "occurred_at": (occurred_at or datetime.now(timezone.utc)).isoformat(),
        "data": data,
    }


def to_json(payload: dict) -> str:
    """Compact JSON; also the canonical form of cached booking responses."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
