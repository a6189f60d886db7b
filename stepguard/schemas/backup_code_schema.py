# stepguard/schemas/backup_code_schema.py

from typing import List

from pydantic import BaseModel


class BackupCodesResponse(BaseModel):
    """Plain backup codes. Shown once; only their hashes are kept."""
    codes: List[str]
