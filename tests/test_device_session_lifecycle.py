from datetime import timedelta

import pytest

from stepguard.core.errors import ConflictError, SessionNotFoundError, UpstreamFailure
from stepguard.core.policy import DeviceTrustPolicy
from stepguard.db.models.device_session_model import LoginMethod, SessionState
from stepguard.services.engine import DeviceTrustEngine
from stepguard.utils.time_utils import utcnow


async def event_types(engine, user_id):
    await engine.dispatcher.drain()
    events, _ = await engine.ledger.list_events(user_id, limit=100)
    return [e.event_type for e in events]


# -----------------------------
# CREATE
# -----------------------------
async def test_high_confidence_session_starts_trusted(engine, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 85)

    assert session.state == SessionState.TRUSTED
    assert session.is_trusted
    assert not session.needs_verification
    assert session.access_level == "full"


async def test_low_confidence_session_starts_unverified(engine, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 39)

    assert session.state == SessionState.UNVERIFIED
    assert not session.is_trusted
    assert session.needs_verification
    assert session.access_level == "restricted"
    assert session.last_verified is None


async def test_session_expires_after_max_age(engine, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 85)
    assert session.expires_at - session.created_at == timedelta(days=365)


async def test_same_device_reuses_device_record(engine, laptop):
    first = await engine.sessions.create_session("user-1", laptop, 85)
    second = await engine.sessions.create_session("user-1", laptop.model_copy(update={"ip_address": "10.1.1.1"}), 85)
    other_user = await engine.sessions.create_session("user-2", laptop, 85)

    assert first.device_id == second.device_id
    assert other_user.device_id != first.device_id
    assert await engine.db.devices.count_documents({}) == 2


async def test_session_id_comes_from_identity_provider(engine, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 85, session_id="idp-session-1")
    assert session.id == "idp-session-1"
    assert (await engine.sessions.get_session("idp-session-1")).user_id == "user-1"


async def test_reused_session_id_is_a_conflict(engine, laptop, phone):
    await engine.sessions.create_session("user-1", laptop, 85, session_id="idp-session-1")

    with pytest.raises(ConflictError) as exc_info:
        await engine.sessions.create_session("user-2", phone, 85, session_id="idp-session-1")

    assert exc_info.value.detail == "Device session already exists"
    assert (await engine.sessions.get_session("idp-session-1")).user_id == "user-1"


# -----------------------------
# ESTABLISH
# -----------------------------
async def test_new_account_is_trusted_with_full_confidence(engine, laptop, notifier):
    session = await engine.sessions.establish_session("user-1", laptop)

    assert session.confidence_score == 100
    assert session.is_trusted
    types = await event_types(engine, "user-1")
    assert "NEW_DEVICE_LOGIN" in types
    assert "DEVICE_TRUSTED_AUTO" in types
    assert notifier.sent == []

    events, _ = await engine.ledger.list_events("user-1")
    auto = next(e for e in events if e.event_type == "DEVICE_TRUSTED_AUTO")
    assert auto.metadata["reason"] == "new_account"


async def test_oauth_login_uses_oauth_confidence(engine, laptop, phone):
    await engine.sessions.establish_session("user-1", laptop)
    session = await engine.sessions.establish_session("user-1", phone, login_method=LoginMethod.OAUTH)

    assert session.confidence_score == 85
    assert session.is_trusted

    await engine.dispatcher.drain()
    events, _ = await engine.ledger.list_events("user-1")
    reasons = [e.metadata.get("reason") for e in events if e.event_type == "DEVICE_TRUSTED_AUTO"]
    assert "oauth" in reasons


async def test_unknown_device_login_is_scored_and_alerted(engine, laptop, phone, notifier):
    await engine.sessions.establish_session("user-1", laptop)
    session = await engine.sessions.establish_session("user-1", phone)
    await engine.dispatcher.drain()

    assert session.confidence_score == 0
    assert session.state == SessionState.UNVERIFIED
    assert len(notifier.sent) == 1
    assert notifier.sent[0]["email"] == "user-1@example.com"
    assert notifier.sent[0]["context"]["device"] == "iPhone"


async def test_known_device_login_is_trusted_without_alert(engine, laptop, notifier):
    await engine.sessions.establish_session("user-1", laptop)
    session = await engine.sessions.establish_session("user-1", laptop)
    await engine.dispatcher.drain()

    assert session.confidence_score == 85
    assert session.is_trusted
    assert notifier.sent == []


# -----------------------------
# READ
# -----------------------------
async def test_unknown_session_fails_closed(engine):
    with pytest.raises(SessionNotFoundError):
        await engine.sessions.get_session("does-not-exist")


async def test_foreign_session_fails_closed(engine, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 85)
    with pytest.raises(SessionNotFoundError):
        await engine.sessions.get_session(session.id, user_id="user-2")


async def test_expired_session_fails_closed(engine, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 85)
    with pytest.raises(SessionNotFoundError):
        await engine.sessions.get_session(session.id, now=session.expires_at + timedelta(seconds=1))


async def test_list_sessions_most_recent_first(engine, laptop, phone):
    first = await engine.sessions.create_session("user-1", laptop, 85)
    second = await engine.sessions.create_session("user-1", phone, 85)
    await engine.db.device_sessions.update_one(
        {"_id": first.id}, {"$set": {"last_active": utcnow() + timedelta(minutes=1)}}
    )

    sessions = await engine.sessions.list_sessions("user-1")

    assert [s.id for s in sessions] == [first.id, second.id]
    assert await engine.sessions.list_sessions("user-2") == []


async def test_touch_unknown_session_raises(engine):
    with pytest.raises(SessionNotFoundError):
        await engine.sessions.touch("nope")


# -----------------------------
# GRACE PERIOD
# -----------------------------
async def test_grace_period_boundaries(engine, laptop):
    verified_at = utcnow().replace(microsecond=0)
    session = await engine.sessions.create_session("user-1", laptop, 10)
    await engine.sessions.mark_verified(session.id, now=verified_at)

    assert await engine.sessions.check_grace_period(session.id, verified_at + timedelta(minutes=4)) is False
    assert await engine.sessions.check_grace_period(session.id, verified_at + timedelta(minutes=6)) is True


async def test_grace_period_respects_policy(db, identity_provider, notifier, dispatcher, laptop):
    engine = DeviceTrustEngine(
        db, DeviceTrustPolicy(grace_period_minutes=30), identity_provider, notifier, dispatcher
    )
    verified_at = utcnow().replace(microsecond=0)
    session = await engine.sessions.create_session("user-1", laptop, 10)
    await engine.sessions.mark_verified(session.id, now=verified_at)

    assert await engine.sessions.check_grace_period(session.id, verified_at + timedelta(minutes=29)) is False
    assert await engine.sessions.check_grace_period(session.id, verified_at + timedelta(minutes=31)) is True


async def test_never_verified_session_is_expired_unless_trusted(engine, laptop, phone):
    unverified = await engine.sessions.create_session("user-1", phone, 0)
    trusted = await engine.sessions.create_session("user-1", laptop, 100)

    assert await engine.sessions.check_grace_period(unverified.id) is True
    assert await engine.sessions.check_grace_period(trusted.id) is False


async def test_grace_check_on_missing_session_fails_closed(engine):
    with pytest.raises(SessionNotFoundError):
        await engine.sessions.check_grace_period("missing")


# -----------------------------
# VERIFY / PROMOTE
# -----------------------------
async def test_mark_verified_transitions_to_verified(engine, phone):
    session = await engine.sessions.create_session("user-1", phone, 0)
    await engine.sessions.mark_verified(session.id)

    reloaded = await engine.sessions.get_session(session.id)
    assert reloaded.state == SessionState.VERIFIED
    assert not reloaded.needs_verification
    assert reloaded.last_verified is not None
    assert reloaded.access_level == "full"


async def test_promote_requires_verification(engine, phone):
    session = await engine.sessions.create_session("user-1", phone, 0)

    with pytest.raises(ConflictError):
        await engine.sessions.promote(session.id, "user-1")

    await engine.sessions.mark_verified(session.id)
    promoted = await engine.sessions.promote(session.id, "user-1")

    assert promoted.state == SessionState.TRUSTED
    assert "DEVICE_TRUSTED" in await event_types(engine, "user-1")


# -----------------------------
# REVOKE
# -----------------------------
async def test_revoke_keeps_local_record_when_upstream_fails(engine, identity_provider, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 85)
    await engine.codes.issue_code(session.id)
    identity_provider.fail_invalidate = True

    with pytest.raises(UpstreamFailure):
        await engine.sessions.revoke_session(session.id, "user-1")

    assert (await engine.sessions.get_session(session.id)).id == session.id
    assert await engine.db.verification_codes.count_documents({"device_session_id": session.id}) == 1
    assert "DEVICE_REVOKED" not in await event_types(engine, "user-1")


async def test_revoke_deletes_session_and_invalidates_upstream(engine, identity_provider, notifier, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 85)
    await engine.codes.issue_code(session.id)

    await engine.sessions.revoke_session(session.id, "user-1")

    assert identity_provider.invalidated == [session.id]
    with pytest.raises(SessionNotFoundError):
        await engine.sessions.get_session(session.id)
    assert await engine.db.verification_codes.count_documents({"device_session_id": session.id}) == 0
    assert "DEVICE_REVOKED" in await event_types(engine, "user-1")
    assert len(notifier.sent) == 1


async def test_revoke_foreign_session_fails_closed(engine, identity_provider, laptop):
    session = await engine.sessions.create_session("user-1", laptop, 85)

    with pytest.raises(SessionNotFoundError):
        await engine.sessions.revoke_session(session.id, "user-2")
    assert identity_provider.invalidated == []


async def test_revoke_all_other_sessions(engine, identity_provider, notifier, laptop, phone):
    current = await engine.sessions.create_session("user-1", laptop, 85)
    other_a = await engine.sessions.create_session("user-1", phone, 10)
    other_b = await engine.sessions.create_session("user-1", phone.model_copy(update={"device_name": "iPad"}), 10)
    untouched = await engine.sessions.create_session("user-2", phone, 10)

    revoked = await engine.sessions.revoke_all_other_sessions("user-1", current.id)
    await engine.dispatcher.drain()

    assert revoked == 2
    assert sorted(identity_provider.invalidated) == sorted([other_a.id, other_b.id])
    assert [s.id for s in await engine.sessions.list_sessions("user-1")] == [current.id]
    assert (await engine.sessions.get_session(untouched.id)).user_id == "user-2"
    assert (await event_types(engine, "user-1")).count("DEVICE_REVOKED_ALL") == 2
    assert len(notifier.sent) == 1
