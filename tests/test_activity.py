"""
Unit tests for the activity log.
"""

from medvisit.activity import ActivityLog


def test_record_returns_entry(engine):
    log = ActivityLog(engine)
    entry = log.record("admin-1", "create_doctor", "doctor", 5, "Created doctor: Dr A")
    assert entry.id is not None
    assert entry.entity_id == "5"
    assert entry.details == "Created doctor: Dr A"


def test_list_recent_newest_first_and_bounded(engine):
    log = ActivityLog(engine)
    for i in range(5):
        log.record("admin-1", f"action_{i}", "doctor", i)
    entries = log.list_recent(3)
    assert [e["action"] for e in entries] == ["action_4", "action_3", "action_2"]
    assert isinstance(entries[0]["created_at"], str)


def test_actor_name_comes_from_profile(services, admin):
    services.activity.record("admin-1", "promote_self", "user", "admin-1")
    services.activity.record("ghost", "delete_doctor", "doctor", 1)
    entries = services.activity.list_recent(10)
    names = {e["actor_external_id"]: e["actor_name"] for e in entries}
    assert names == {"admin-1": "Ada Admin", "ghost": None}


def test_entity_id_optional(engine):
    entry = ActivityLog(engine).record("x", "noop", "user")
    assert entry.entity_id is None
