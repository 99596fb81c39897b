"""
Append-only audit trail of role changes, assignment changes and catalog mutations.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import insert, select

from medvisit.config import ACTIVITY_LIST_LIMIT, LIST_HARD_CAP
from medvisit.database import activity_logs, user_profiles
from medvisit.models import ActivityLogEntry, to_dict

# Actor recorded for writes that originate from identity-provider webhooks.
PROVIDER_ACTOR = "system:identity-provider"


class ActivityLog:
    """Write-side audit sink. Entries are never updated or deleted."""

    def __init__(self, engine):
        self.engine = engine

    def record(
        self,
        actor_external_id: str,
        action: str,
        entity_type: str,
        entity_id: Optional[Any] = None,
        details: Optional[str] = None,
    ) -> ActivityLogEntry:
        values = {
            "actor_external_id": actor_external_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id is not None else None,
            "details": details,
            "created_at": datetime.utcnow(),
        }
        with self.engine.begin() as conn:
            result = conn.execute(insert(activity_logs).values(**values))
            new_id = result.inserted_primary_key[0]
        return ActivityLogEntry(id=new_id, **values)

    def list_recent(self, limit: int = ACTIVITY_LIST_LIMIT) -> List[Dict[str, Any]]:
        """Newest first, each entry enriched with the actor's profile name."""
        limit = max(0, min(int(limit), LIST_HARD_CAP))
        sql = (
            select(activity_logs, user_profiles.c.name.label("actor_name"))
            .select_from(
                activity_logs.outerjoin(
                    user_profiles,
                    user_profiles.c.external_id == activity_logs.c.actor_external_id,
                )
            )
            .order_by(activity_logs.c.created_at.desc(), activity_logs.c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(sql).mappings().all()

        out = []
        for row in rows:
            data = dict(row)
            actor_name = data.pop("actor_name", None)
            entry = to_dict(ActivityLogEntry(**data))
            entry["actor_name"] = actor_name
            out.append(entry)
        return out
