"""
Proactive scheduler — runs the ProactiveAgent on a fixed cadence.

Every tick enqueues one pass per user with at least one active standing
instruction; passes for different users are independent jobs, so a slow or
failing user never delays the others.
"""

import logging
from typing import TYPE_CHECKING

from ..config import settings
from .queue import JobQueue

if TYPE_CHECKING:
    from ..agents.proactive import PassResult, ProactiveAgent
    from ..cache.instructions import InstructionStore

logger = logging.getLogger(__name__)


class ProactiveScheduler:
    """
    Usage:
        scheduler = ProactiveScheduler(agent, instruction_store, queue)
        scheduler.start()
    """

    def __init__(
        self,
        agent: "ProactiveAgent",
        instructions: "InstructionStore",
        queue: JobQueue,
    ) -> None:
        self._agent = agent
        self._instructions = instructions
        self._queue = queue

    def start(self) -> None:
        self._queue.schedule_recurring("proactive_tick", self.tick, settings.proactive_cron)
        logger.info("Proactive agent scheduled (cron: %s)", settings.proactive_cron)

    async def tick(self) -> int:
        """Enqueue one pass per user with active instructions."""
        user_ids = await self._instructions.users_with_active_instructions()
        for user_id in user_ids:
            self.trigger(user_id)
        if user_ids:
            logger.debug("Queued proactive pass for %d user(s)", len(user_ids))
        return len(user_ids)

    def trigger(self, user_id: int) -> None:
        # No retry: the next tick re-evaluates anything still in the window
        self._queue.enqueue(f"proactive_{user_id}", lambda: self.run_pass(user_id))

    async def run_pass(self, user_id: int) -> "PassResult":
        return await self._agent.run_for_user(user_id)
