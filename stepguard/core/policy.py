# stepguard/core/policy.py
"""
Device trust policy.

The policy is a plain immutable value. It is built once (usually from
Settings) and handed to every service constructor, so tests can run the
engine with different grace periods, code lengths or method sets side by
side.
"""

from enum import Enum
from typing import Dict, FrozenSet

from pydantic import BaseModel, Field


class VerificationMethod(str, Enum):
    """Every way a user can prove identity for a step-up challenge."""

    AUTHENTICATOR = "authenticator"
    SMS = "sms"
    BACKUP_CODES = "backup_codes"
    PASSWORD = "password"
    DEVICE_CODE = "device_code"


# Methods that count as an enrolled second factor
TWO_FACTOR_METHODS = frozenset({VerificationMethod.AUTHENTICATOR, VerificationMethod.SMS})


class SensitiveAction(str, Enum):
    VIEW_PROFILE = "view_profile"
    UPDATE_PROFILE = "update_profile"
    LIST_DEVICES = "list_devices"
    TRUST_DEVICE = "trust_device"
    REVOKE_DEVICE = "revoke_device"
    REVOKE_ALL_DEVICES = "revoke_all_devices"
    ENABLE_2FA = "enable_2fa"
    DISABLE_2FA = "disable_2fa"
    CHANGE_EMAIL = "change_email"
    CHANGE_PASSWORD = "change_password"
    CONNECT_SOCIAL_PROVIDER = "connect_social_provider"
    DISCONNECT_SOCIAL_PROVIDER = "disconnect_social_provider"
    GENERATE_BACKUP_CODES = "generate_backup_codes"
    EXPORT_DATA = "export_data"
    DELETE_ACCOUNT = "delete_account"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionPolicy(BaseModel):
    """Freshness and alerting rules for one action type."""

    requires_fresh_verification: bool = False
    alert_on_initiate: bool = False
    alert_on_complete: bool = False

    class Config:
        frozen = True


ROUTINE = ActionPolicy()


def default_action_policies() -> Dict[SensitiveAction, ActionPolicy]:
    fresh = ActionPolicy(requires_fresh_verification=True)
    fresh_alert = ActionPolicy(requires_fresh_verification=True, alert_on_complete=True)
    fresh_alert_both = ActionPolicy(
        requires_fresh_verification=True,
        alert_on_initiate=True,
        alert_on_complete=True,
    )

    return {
        SensitiveAction.VIEW_PROFILE: ROUTINE,
        SensitiveAction.UPDATE_PROFILE: ROUTINE,
        SensitiveAction.LIST_DEVICES: ROUTINE,
        SensitiveAction.TRUST_DEVICE: ROUTINE,
        SensitiveAction.REVOKE_DEVICE: fresh_alert,
        SensitiveAction.REVOKE_ALL_DEVICES: fresh_alert,
        SensitiveAction.ENABLE_2FA: fresh_alert,
        SensitiveAction.DISABLE_2FA: fresh_alert,
        SensitiveAction.CHANGE_EMAIL: fresh_alert_both,
        SensitiveAction.CHANGE_PASSWORD: fresh_alert,
        SensitiveAction.CONNECT_SOCIAL_PROVIDER: fresh_alert,
        SensitiveAction.DISCONNECT_SOCIAL_PROVIDER: fresh_alert,
        SensitiveAction.GENERATE_BACKUP_CODES: fresh_alert,
        SensitiveAction.EXPORT_DATA: fresh,
        SensitiveAction.DELETE_ACCOUNT: fresh_alert_both,
    }


def default_enabled_methods() -> FrozenSet[VerificationMethod]:
    return frozenset({
        VerificationMethod.AUTHENTICATOR,
        VerificationMethod.BACKUP_CODES,
        VerificationMethod.PASSWORD,
        VerificationMethod.DEVICE_CODE,
    })


class DeviceTrustPolicy(BaseModel):
    """
    Tunables for scoring, verification codes, grace periods and alerts.

    Unknown action types fall back to ``ROUTINE``.
    """

    grace_period_minutes: int = Field(5, ge=0)

    code_length: int = Field(6, ge=4, le=12)
    code_expiry_minutes: int = Field(10, gt=0)

    high_confidence_threshold: int = Field(70, ge=0, le=100)
    medium_confidence_threshold: int = Field(40, ge=0, le=100)
    oauth_confidence_score: int = Field(85, ge=0, le=100)

    session_max_age_days: int = Field(365, gt=0)

    enabled_methods: FrozenSet[VerificationMethod] = Field(default_factory=default_enabled_methods)
    backup_code_count: int = Field(8, gt=0)

    alert_on_unknown_device_login: bool = True
    unknown_device_alert_threshold: int = Field(70, ge=0, le=100)

    actions: Dict[SensitiveAction, ActionPolicy] = Field(default_factory=default_action_policies)

    class Config:
        frozen = True

    def for_action(self, action: SensitiveAction) -> ActionPolicy:
        return self.actions.get(action, ROUTINE)

    def is_enabled(self, method: VerificationMethod) -> bool:
        return method in self.enabled_methods

    def confidence_level(self, score: int) -> ConfidenceLevel:
        if score >= self.high_confidence_threshold:
            return ConfidenceLevel.HIGH
        if score >= self.medium_confidence_threshold:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW
