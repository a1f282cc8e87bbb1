# /oo_keeper/core/agent.py
# Fixed-interval scheduler around the keeper. A cycle is update -> act; a
# failed update skips the cycle, the kill switch stops the loop between cycles.

import asyncio
import time
from typing import List, Optional

from oo_keeper.core.errors import QueryError
from oo_keeper.core.keeper import OptimisticOracleKeeper
from oo_keeper.core.kill import check, KillSwitchActiveError
from oo_keeper.core.logger import get_logger, set_cycle_counter
from oo_keeper.core.models import ActionResult

log = get_logger(__name__)


class KeeperAgent:
    def __init__(self, keeper: OptimisticOracleKeeper, polling_interval: Optional[int] = None):
        self.keeper = keeper
        self.polling_interval = polling_interval if polling_interval is not None else keeper.config.polling_interval_seconds
        self.cycle_counter = 0
        self.last_cycle_results: List[ActionResult] = []
        self.last_successful_cycle: Optional[float] = None
        self.halted = False

    async def run_once(self) -> List[ActionResult]:
        check()
        self.cycle_counter += 1
        set_cycle_counter(self.cycle_counter)

        results = await self.keeper.run_cycle()
        self.last_cycle_results = results
        self.last_successful_cycle = time.time()
        log.info(
            "KEEPER_CYCLE_COMPLETE",
            actions=len(results),
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    async def run_loop(self, max_cycles: Optional[int] = None):
        """The main async execution loop."""
        log.info("KEEPER_AGENT_STARTING_LOOP", account=self.keeper.account, polling_interval=self.polling_interval)

        while True:
            try:
                await self.run_once()
            except KillSwitchActiveError as e:
                self.halted = True
                log.critical("KEEPER_AGENT_HALTED_BY_KILL_SWITCH", reason=e.reason)
                return
            except QueryError as e:
                log.error("KEEPER_UPDATE_FAILED_SKIPPING_CYCLE", error=str(e))
            except Exception as e:
                log.error("KEEPER_AGENT_LOOP_ERROR", error=str(e), exc_info=True)

            if max_cycles is not None and self.cycle_counter >= max_cycles:
                log.info("KEEPER_AGENT_MAX_CYCLES_REACHED", cycles=self.cycle_counter)
                return
            await asyncio.sleep(self.polling_interval)

    def status(self) -> dict:
        return {
            "account": self.keeper.account,
            "cycle_counter": self.cycle_counter,
            "last_successful_cycle": self.last_successful_cycle,
            "halted": self.halted,
        }
