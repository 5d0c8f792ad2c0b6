"""
User status sink and the auto-activation gate.

A user is activated only when their conversation is completed, every
extraction job for it has settled, and the safety screening is not flagged.
"""

import logging
from datetime import datetime, timezone

from intake_backend.models import UserAccount

logger = logging.getLogger(__name__)


class UserStatusSink:
    async def mark_active(self, user_id: str) -> None:
        raise NotImplementedError


class StoreUserStatusSink(UserStatusSink):
    """Flips the user_accounts row to active, creating it if needed."""

    def __init__(self, store):
        self.store = store

    async def mark_active(self, user_id: str) -> None:
        now = datetime.now(timezone.utc)
        user = await self.store.get_user(user_id)
        if user is None:
            user = UserAccount(id=user_id, created_at=now)
        user.status = 'active'
        user.activated_at = now
        await self.store.put_user(user)
        logger.info("[ACTIVATION] user=%s marked active", user_id)


class ActivationGate:
    def __init__(self, store, sink: UserStatusSink = None):
        self.store = store
        self.sink = sink or StoreUserStatusSink(store)

    async def try_activate(self, conversation_id) -> bool:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None or conversation.status != 'completed' or conversation.activated_at:
            return False

        pending = await self.store.count_unsettled_jobs(conversation.id)
        if pending:
            logger.info(
                "[ACTIVATION] conversation=%s waiting on %d extraction jobs",
                conversation.id,
                pending,
            )
            return False

        screening = await self.store.get_safety_screening(conversation.user_id)
        if screening is not None and screening.flagged_for_review:
            logger.warning(
                "[ACTIVATION] user=%s held for safety review (risk=%s)",
                conversation.user_id,
                screening.overall_risk_level,
            )
            return False

        await self.sink.mark_active(conversation.user_id)
        conversation.activated_at = datetime.now(timezone.utc)
        await self.store.put_conversation(conversation)
        return True
