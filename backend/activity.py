"""Bounded activity log: the last few narrative events, newest first."""
from typing import Dict, List, Optional

import config
import models
from models import ActivityEntry, Room


def add_activity(room: Room, text) -> ActivityEntry:
    entry = ActivityEntry(
        id=models.new_id("a"),
        ts=models.now_ms(),
        ttl_ms=config.ACTIVITY_TTL_MS,
        text=str(text or "")[:config.MAX_ACTIVITY_TEXT_LENGTH],
    )
    room.activity = [entry, *room.activity][:config.MAX_ACTIVITY]
    return entry


def visible_entries(entries: List[ActivityEntry], received_at: Dict[str, int],
                    now: Optional[int] = None) -> List[ActivityEntry]:
    """Entries a client should still display.

    The TTL starts when this client first saw an entry, not at the writer's
    ``ts``, so a client with a skewed clock still shows every toast.
    ``received_at`` is the caller's own id -> first-seen map; it is updated in
    place and pruned of entries no longer in the list.
    """
    now = models.now_ms() if now is None else now
    ids = set()
    for e in entries:
        ids.add(e.id)
        received_at.setdefault(e.id, now)
    for stale in [k for k in received_at if k not in ids]:
        del received_at[stale]
    return [e for e in entries if e.ttl_ms > 0 and now < received_at[e.id] + e.ttl_ms]
