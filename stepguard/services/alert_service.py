# stepguard/services/alert_service.py

import logging
from typing import Any, Dict, Optional

from stepguard.services.background_worker import BackgroundDispatcher
from stepguard.services.email_service import EmailNotifier
from stepguard.services.identity_provider import IdentityProvider

logger = logging.getLogger(__name__)


class SecurityAlerter:
    """
    Queues security alert emails for a user.

    The recipient address is looked up from the identity provider inside the
    queued job, so neither the lookup nor delivery can fail the caller.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        notifier: EmailNotifier,
        dispatcher: BackgroundDispatcher,
    ):
        self.identity_provider = identity_provider
        self.notifier = notifier
        self.dispatcher = dispatcher

    def alert(
        self,
        user_id: str,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        transactional: bool = False,
    ):
        async def job():
            user = await self.identity_provider.get_user(user_id)
            await self.notifier.send(user.email, title, message, context, transactional=transactional)

        logger.info("Queued security alert '%s' for user %s", title, user_id)
        self.dispatcher.submit(job, f"security alert '{title}' for user {user_id}")
