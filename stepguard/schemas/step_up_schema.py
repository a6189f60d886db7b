# stepguard/schemas/step_up_schema.py

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from stepguard.core.policy import SensitiveAction


# -----------------------------
# VERIFICATION FACTORS
# -----------------------------
class AuthenticatorFactor(BaseModel):
    type: Literal["authenticator"] = "authenticator"
    factor_id: str
    challenge_id: Optional[str] = None


class SmsFactor(BaseModel):
    type: Literal["sms"] = "sms"
    factor_id: str
    # SMS challenges are started first so the code can be delivered
    challenge_id: Optional[str] = None


class BackupCodeFactor(BaseModel):
    type: Literal["backup_codes"] = "backup_codes"


class PasswordFactor(BaseModel):
    type: Literal["password"] = "password"


class DeviceCodeFactor(BaseModel):
    type: Literal["device_code"] = "device_code"


VerificationFactor = Annotated[
    Union[AuthenticatorFactor, SmsFactor, BackupCodeFactor, PasswordFactor, DeviceCodeFactor],
    Field(discriminator="type"),
]


class VerificationRequirement(BaseModel):
    """
    Outcome of resolving an action against the current device session.

    ``methods`` is ordered by preference and ``default`` is its first entry.
    Both are empty when no verification is required.
    """

    required: bool
    methods: List[VerificationFactor] = Field(default_factory=list)
    default: Optional[VerificationFactor] = None

    class Config:
        json_schema_extra = {
            "example": {
                "required": True,
                "methods": [
                    {"type": "authenticator", "factor_id": "f3b1c2d4", "challenge_id": None},
                    {"type": "backup_codes"},
                ],
                "default": {"type": "authenticator", "factor_id": "f3b1c2d4", "challenge_id": None},
            }
        }


# -----------------------------
# REQUESTS
# -----------------------------
class StepUpRequirementRequest(BaseModel):
    action: SensitiveAction


class StepUpChallengeRequest(BaseModel):
    factor: VerificationFactor


class StepUpChallengeResponse(BaseModel):
    challenge_id: str


class StepUpVerifyRequest(BaseModel):
    action: SensitiveAction
    factor: VerificationFactor
    code: str = Field(..., min_length=1, max_length=256, description="Factor code, backup code, password or device code")


class StepUpVerifyResponse(BaseModel):
    verified: bool = True
    device_session_id: str
