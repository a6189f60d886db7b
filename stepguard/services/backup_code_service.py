# stepguard/services/backup_code_service.py
"""
Backup recovery codes.

Format ``XXXX-XXXX-XXXX-XXXX-CCC``: sixteen random digits in four groups
and a three digit checksum (digit sum mod 1000). The checksum catches
typos before any hash comparison is attempted.
"""

import logging
import secrets
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from stepguard.core.policy import DeviceTrustPolicy
from stepguard.core.security import hash_code, verify_code
from stepguard.db.models.account_event_model import EventType
from stepguard.db.models.verification_code_model import BackupCodeModel
from stepguard.db.mongodb import session_kwargs
from stepguard.services.account_event_service import AccountEventLedger
from stepguard.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

GROUPS = 4
GROUP_SIZE = 4


def _checksum(digits: str) -> str:
    return str(sum(int(d) for d in digits) % 1000).zfill(3)


def generate_backup_code() -> str:
    groups = [str(secrets.randbelow(10 ** GROUP_SIZE)).zfill(GROUP_SIZE) for _ in range(GROUPS)]
    groups.append(_checksum("".join(groups)))
    return "-".join(groups)


def normalize_backup_code(code: str) -> str:
    return code.strip().replace(" ", "")


def is_valid_backup_code_format(code: str) -> bool:
    parts = normalize_backup_code(code).split("-")
    if len(parts) != GROUPS + 1:
        return False
    if not all(p.isdigit() and len(p) == GROUP_SIZE for p in parts[:GROUPS]):
        return False
    return parts[GROUPS] == _checksum("".join(parts[:GROUPS]))


class BackupCodeService:
    def __init__(self, db: AsyncIOMotorDatabase, policy: DeviceTrustPolicy, ledger: AccountEventLedger):
        self.db = db
        self.policy = policy
        self.ledger = ledger

    async def generate_backup_codes(self, user_id: str) -> List[str]:
        """
        Replace the user's unused backup codes with a fresh set.

        The plain codes are returned once and never stored.
        """
        codes = [generate_backup_code() for _ in range(self.policy.backup_code_count)]
        now = utcnow()
        records = [
            BackupCodeModel(user_id=user_id, code_hash=hash_code(code), created_at=now).model_dump(exclude={"id"})
            for code in codes
        ]

        await self.db.backup_codes.delete_many({"user_id": user_id, "used_at": None})
        await self.db.backup_codes.insert_many(records)

        logger.info("Generated %d backup codes for user %s", len(codes), user_id)
        self.ledger.record_event(user_id, EventType.BACKUP_CODES_GENERATED, metadata={"count": len(codes)})
        return codes

    async def has_backup_codes(self, user_id: str) -> bool:
        doc = await self.db.backup_codes.find_one({"user_id": user_id, "used_at": None})
        return doc is not None

    async def claim_backup_code(self, user_id: str, code: str, db_session=None) -> Optional[dict]:
        """
        Mark one matching unused code as used and return it. Returns None when
        nothing matched or a concurrent request used the code first.
        """
        code = normalize_backup_code(code)
        if not is_valid_backup_code_format(code):
            return None

        cursor = self.db.backup_codes.find({"user_id": user_id, "used_at": None})
        for doc in await cursor.to_list(length=None):
            if not verify_code(code, doc["code_hash"]):
                continue

            used_at = utcnow()
            result = await self.db.backup_codes.update_one(
                {"_id": doc["_id"], "used_at": None},
                {"$set": {"used_at": used_at}},
                **session_kwargs(db_session),
            )
            if result.modified_count == 0:
                logger.warning("Backup code for user %s was already used", user_id)
                return None
            return {**doc, "used_at": used_at}

        logger.warning("Rejected backup code for user %s", user_id)
        return None

    async def release_backup_code(self, code_id):
        """Undo a claim whose follow-up write failed."""
        await self.db.backup_codes.update_one({"_id": code_id}, {"$set": {"used_at": None}})
        logger.info("Released backup code %s", code_id)

    async def record_backup_code_use(self, user_id: str, device_session_id: Optional[str] = None):
        remaining = await self.db.backup_codes.count_documents({"user_id": user_id, "used_at": None})
        logger.info("Backup code used for user %s (%d remaining)", user_id, remaining)
        self.ledger.record_event(
            user_id,
            EventType.BACKUP_CODE_USED,
            device_session_id,
            {"remaining": remaining},
        )

    async def consume_backup_code(self, user_id: str, code: str, device_session_id: Optional[str] = None) -> bool:
        claimed = await self.claim_backup_code(user_id, code)
        if claimed is None:
            return False
        await self.record_backup_code_use(user_id, device_session_id)
        return True
