from datetime import timedelta

import pytest

from stepguard.core.errors import (
    InvalidCodeError,
    MethodNotEnabledError,
    MisconfigurationError,
    NotFoundError,
    SessionNotFoundError,
    UpstreamFailure,
    VerificationRequiredError,
)
from stepguard.core.policy import DeviceTrustPolicy, SensitiveAction, VerificationMethod
from stepguard.db.models.device_session_model import SessionState
from stepguard.schemas.step_up_schema import (
    AuthenticatorFactor,
    BackupCodeFactor,
    DeviceCodeFactor,
    PasswordFactor,
    SmsFactor,
)
from stepguard.services.engine import DeviceTrustEngine
from stepguard.utils.time_utils import utcnow


def method_types(requirement):
    return [factor.type for factor in requirement.methods]


@pytest.fixture
async def unverified(engine, phone):
    return await engine.sessions.create_session("user-1", phone, 0)


async def test_end_to_end_step_up(engine, identity_provider, laptop, phone):
    identity_provider.enroll("user-1", "totp-1", "totp", code="246810")

    device_a = await engine.sessions.establish_session("user-1", laptop)
    assert device_a.confidence_score == 100
    assert device_a.state == SessionState.TRUSTED

    routine = await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.VIEW_PROFILE, device_a.id)
    assert routine.required is False

    device_b = await engine.sessions.establish_session("user-1", phone)
    assert device_b.confidence_score == 0
    assert engine.scorer.level(device_b.confidence_score).value == "low"
    assert device_b.state == SessionState.UNVERIFIED

    requirement = await engine.step_up.resolve_verification_requirement(
        "user-1", SensitiveAction.DISABLE_2FA, device_b.id
    )
    assert requirement.required is True
    assert requirement.default == AuthenticatorFactor(factor_id="totp-1")
    assert method_types(requirement) == ["authenticator"]

    verified = await engine.step_up.complete_verification(
        "user-1", device_b.id, SensitiveAction.DISABLE_2FA, requirement.default, "246810"
    )
    assert verified.state == SessionState.VERIFIED

    await engine.dispatcher.drain()
    events, _ = await engine.ledger.list_events("user-1")
    step_up_events = [e for e in events if e.event_type == "SENSITIVE_ACTION_VERIFIED"]
    assert len(step_up_events) == 1
    assert step_up_events[0].device_session_id == device_b.id
    assert step_up_events[0].metadata["action"] == "disable_2fa"
    assert step_up_events[0].metadata["method"] == "authenticator"

    again = await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DISABLE_2FA, device_b.id)
    assert again.required is False


async def test_routine_action_never_requires_verification(engine, unverified):
    requirement = await engine.step_up.resolve_verification_requirement(
        "user-1", SensitiveAction.UPDATE_PROFILE, unverified.id
    )
    assert requirement.required is False
    assert requirement.methods == []
    assert requirement.default is None


async def test_within_grace_period_no_challenge(engine, unverified):
    await engine.sessions.mark_verified(unverified.id)

    requirement = await engine.step_up.resolve_verification_requirement(
        "user-1", SensitiveAction.CHANGE_EMAIL, unverified.id
    )
    assert requirement.required is False


async def test_after_grace_period_challenge_again(engine, identity_provider, unverified):
    identity_provider.add_user("user-1", password="hunter2")
    verified_at = utcnow().replace(microsecond=0)
    await engine.sessions.mark_verified(unverified.id, now=verified_at)

    requirement = await engine.step_up.resolve_verification_requirement(
        "user-1", SensitiveAction.CHANGE_PASSWORD, unverified.id, now=verified_at + timedelta(minutes=6)
    )
    assert requirement.required is True
    assert (await engine.sessions.get_session(unverified.id)).needs_verification


async def test_foreign_session_fails_closed(engine, unverified):
    with pytest.raises(SessionNotFoundError):
        await engine.step_up.resolve_verification_requirement("user-2", SensitiveAction.DISABLE_2FA, unverified.id)


async def test_authenticator_preferred_over_sms(db, identity_provider, notifier, dispatcher, phone):
    policy = DeviceTrustPolicy(enabled_methods=frozenset(VerificationMethod))
    engine = DeviceTrustEngine(db, policy, identity_provider, notifier, dispatcher)
    identity_provider.enroll("user-1", "phone-1", "phone")
    identity_provider.enroll("user-1", "totp-1", "totp")
    session = await engine.sessions.create_session("user-1", phone, 0)

    requirement = await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DISABLE_2FA, session.id)

    assert method_types(requirement) == ["authenticator", "sms"]
    assert requirement.default.type == "authenticator"


async def test_sms_factor_ignored_when_sms_disabled(engine, identity_provider, unverified):
    identity_provider.enroll("user-1", "phone-1", "phone")

    requirement = await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DISABLE_2FA, unverified.id)

    assert method_types(requirement) == ["device_code"]


async def test_unconfirmed_factor_does_not_count(engine, identity_provider, unverified):
    identity_provider.enroll("user-1", "totp-1", "totp", status="unverified")
    identity_provider.add_user("user-1", password="hunter2")

    requirement = await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DISABLE_2FA, unverified.id)

    assert method_types(requirement) == ["password", "device_code"]
    assert requirement.default == PasswordFactor()


async def test_backup_codes_offered_with_and_without_second_factor(engine, identity_provider, unverified):
    identity_provider.add_user("user-1", password="hunter2")
    await engine.backup_codes.generate_backup_codes("user-1")

    fallback = await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DISABLE_2FA, unverified.id)
    assert method_types(fallback) == ["backup_codes", "password", "device_code"]

    identity_provider.enroll("user-1", "totp-1", "totp")
    with_2fa = await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DISABLE_2FA, unverified.id)
    assert method_types(with_2fa) == ["authenticator", "backup_codes"]


async def test_no_method_available_is_misconfiguration(db, identity_provider, notifier, dispatcher, phone):
    policy = DeviceTrustPolicy(enabled_methods=frozenset({VerificationMethod.AUTHENTICATOR}))
    engine = DeviceTrustEngine(db, policy, identity_provider, notifier, dispatcher)
    session = await engine.sessions.create_session("user-1", phone, 0)

    with pytest.raises(MisconfigurationError):
        await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DELETE_ACCOUNT, session.id)


async def test_upstream_failure_propagates(engine, identity_provider, unverified):
    identity_provider.fail_factors = True

    with pytest.raises(UpstreamFailure):
        await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DISABLE_2FA, unverified.id)


async def test_require_fresh_verification_raises_with_challenge_set(engine, unverified):
    with pytest.raises(VerificationRequiredError) as exc_info:
        await engine.step_up.require_fresh_verification("user-1", SensitiveAction.REVOKE_DEVICE, unverified.id)

    body = exc_info.value.to_response()
    assert exc_info.value.status_code == 403
    assert body["error"] == "verification_required"
    assert body["required"] is True
    assert body["default"] == {"type": "device_code"}


# -----------------------------
# ALERTS
# -----------------------------
async def test_alert_on_initiate(engine, notifier, unverified):
    await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.CHANGE_EMAIL, unverified.id)
    await engine.dispatcher.drain()

    assert len(notifier.sent) == 1
    assert notifier.sent[0]["context"]["action"] == "change email"


async def test_no_initiate_alert_when_policy_disables_it(engine, notifier, unverified):
    await engine.step_up.resolve_verification_requirement("user-1", SensitiveAction.DISABLE_2FA, unverified.id)
    await engine.dispatcher.drain()

    assert notifier.sent == []


async def test_alert_on_complete(engine, notifier, unverified):
    code, _ = await engine.codes.issue_code(unverified.id)

    await engine.step_up.complete_verification(
        "user-1", unverified.id, SensitiveAction.DISABLE_2FA, DeviceCodeFactor(), code
    )
    await engine.dispatcher.drain()

    assert len(notifier.sent) == 1
    assert "disable 2fa" in notifier.sent[0]["title"]


async def test_export_data_completes_without_alert(engine, notifier, unverified):
    code, _ = await engine.codes.issue_code(unverified.id)

    await engine.step_up.complete_verification("user-1", unverified.id, SensitiveAction.EXPORT_DATA, DeviceCodeFactor(), code)
    await engine.dispatcher.drain()

    assert notifier.sent == []


# -----------------------------
# COMPLETE
# -----------------------------
async def test_wrong_authenticator_code_rejected(engine, identity_provider, unverified):
    identity_provider.enroll("user-1", "totp-1", "totp", code="246810")

    with pytest.raises(InvalidCodeError):
        await engine.step_up.complete_verification(
            "user-1", unverified.id, SensitiveAction.DISABLE_2FA, AuthenticatorFactor(factor_id="totp-1"), "000000"
        )
    assert (await engine.sessions.get_session(unverified.id)).state == SessionState.UNVERIFIED


async def test_factor_of_another_user_rejected(engine, identity_provider, unverified):
    identity_provider.enroll("user-2", "totp-2", "totp", code="246810")

    with pytest.raises(NotFoundError):
        await engine.step_up.complete_verification(
            "user-1", unverified.id, SensitiveAction.DISABLE_2FA, AuthenticatorFactor(factor_id="totp-2"), "246810"
        )


async def test_sms_challenge_then_verify(db, identity_provider, notifier, dispatcher, phone):
    policy = DeviceTrustPolicy(enabled_methods=frozenset(VerificationMethod))
    engine = DeviceTrustEngine(db, policy, identity_provider, notifier, dispatcher)
    identity_provider.enroll("user-1", "phone-1", "phone", code="135790")
    session = await engine.sessions.create_session("user-1", phone, 0)

    challenge_id = await engine.step_up.start_challenge("user-1", session.id, SmsFactor(factor_id="phone-1"))
    verified = await engine.step_up.complete_verification(
        "user-1",
        session.id,
        SensitiveAction.CHANGE_PASSWORD,
        SmsFactor(factor_id="phone-1", challenge_id=challenge_id),
        "135790",
    )

    assert verified.state == SessionState.VERIFIED


async def test_disabled_method_rejected(engine, unverified):
    with pytest.raises(MethodNotEnabledError):
        await engine.step_up.complete_verification(
            "user-1", unverified.id, SensitiveAction.DISABLE_2FA, SmsFactor(factor_id="phone-1"), "135790"
        )


async def test_password_verification(engine, identity_provider, unverified):
    identity_provider.add_user("user-1", password="hunter2")

    with pytest.raises(InvalidCodeError):
        await engine.step_up.complete_verification(
            "user-1", unverified.id, SensitiveAction.CHANGE_EMAIL, PasswordFactor(), "wrong"
        )

    verified = await engine.step_up.complete_verification(
        "user-1", unverified.id, SensitiveAction.CHANGE_EMAIL, PasswordFactor(), "hunter2"
    )
    assert verified.state == SessionState.VERIFIED


async def test_backup_code_verification_is_single_use(engine, unverified):
    codes = await engine.backup_codes.generate_backup_codes("user-1")

    verified = await engine.step_up.complete_verification(
        "user-1", unverified.id, SensitiveAction.DISABLE_2FA, BackupCodeFactor(), codes[0]
    )
    assert verified.state == SessionState.VERIFIED

    with pytest.raises(InvalidCodeError):
        await engine.step_up.complete_verification(
            "user-1", unverified.id, SensitiveAction.DISABLE_2FA, BackupCodeFactor(), codes[0]
        )


async def test_backup_code_kept_when_session_update_fails(engine, unverified, monkeypatch):
    codes = await engine.backup_codes.generate_backup_codes("user-1")

    async def broken_mark_verified(*args, **kwargs):
        raise SessionNotFoundError()

    monkeypatch.setattr(engine.sessions, "mark_verified", broken_mark_verified)

    with pytest.raises(SessionNotFoundError):
        await engine.step_up.complete_verification(
            "user-1", unverified.id, SensitiveAction.DISABLE_2FA, BackupCodeFactor(), codes[0]
        )

    assert await engine.db.backup_codes.count_documents({"user_id": "user-1", "used_at": None}) == 8

    monkeypatch.undo()
    verified = await engine.step_up.complete_verification(
        "user-1", unverified.id, SensitiveAction.DISABLE_2FA, BackupCodeFactor(), codes[0]
    )
    assert verified.state == SessionState.VERIFIED

    await engine.dispatcher.drain()
    events, _ = await engine.ledger.list_events("user-1")
    assert [e.event_type for e in events].count("BACKUP_CODE_USED") == 1


async def test_sms_verification_needs_its_challenge(db, identity_provider, notifier, dispatcher, phone):
    policy = DeviceTrustPolicy(enabled_methods=frozenset(VerificationMethod))
    engine = DeviceTrustEngine(db, policy, identity_provider, notifier, dispatcher)
    identity_provider.enroll("user-1", "phone-1", "phone", code="135790")
    session = await engine.sessions.create_session("user-1", phone, 0)

    with pytest.raises(InvalidCodeError):
        await engine.step_up.complete_verification(
            "user-1", session.id, SensitiveAction.CHANGE_PASSWORD, SmsFactor(factor_id="phone-1"), "135790"
        )

    assert identity_provider.challenges == {}
    assert (await engine.sessions.get_session(session.id)).state == SessionState.UNVERIFIED
