# /main.py
# Wires the optimistic oracle keeper to the chain and runs it on a fixed interval.
import asyncio
from aiohttp import web

from oo_keeper.core.config import settings, KeeperConfig
from oo_keeper.core.config_validator import validate as validate_config
from oo_keeper.core.logger import bind_keeper_context, configure_logging, get_logger
from oo_keeper.core.kill import kill_switch_reason
from oo_keeper.core.tx import TransactionManager
from oo_keeper.core.gas_estimator import GasEstimator
from oo_keeper.core.client import OptimisticOracleClient
from oo_keeper.core.price_feed_resolver import PriceFeedResolver
from oo_keeper.core.keeper import OptimisticOracleKeeper
from oo_keeper.core.agent import KeeperAgent
from oo_keeper.adapters.optimistic_oracle import Web3OptimisticOracle
from oo_keeper.adapters.fallback_oracle import Web3FallbackOracle


def make_healthz(agent: KeeperAgent):
    async def healthz(request):
        """Provides a JSON health status for the service."""
        halt_reason = kill_switch_reason()
        return web.json_response({
            "status": "halted" if halt_reason else "ok",
            "halt_reason": halt_reason,
            **agent.status(),
        })
    return healthz


async def main():
    configure_logging()
    log = get_logger("OOKeeper.System")
    validate_config()
    log.info("OPTIMISTIC_ORACLE_KEEPER_STARTING")

    tx_manager = TransactionManager()
    await tx_manager.initialize()
    bind_keeper_context(tx_manager.address, settings.chain_id)

    oracle = Web3OptimisticOracle(tx_manager)
    await oracle.initialize()
    fallback_oracle = Web3FallbackOracle(tx_manager.provider)

    client = OptimisticOracleClient(
        oracle,
        fallback_oracle,
        start_block=settings.START_BLOCK,
        max_block_range=settings.MAX_BLOCK_RANGE,
    )
    keeper = OptimisticOracleKeeper(
        client=client,
        oracle=oracle,
        price_feed_resolver=PriceFeedResolver(),
        gas_estimator=GasEstimator(tx_manager.w3),
        config=KeeperConfig.from_settings(tx_manager.address, settings),
    )
    agent = KeeperAgent(keeper)

    app = web.Application()
    app.add_routes([web.get("/healthz", make_healthz(agent))])
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", settings.HEALTH_PORT or 8080)
    await site.start()
    log.info("HEALTHCHECK_SERVER_STARTED", port=settings.HEALTH_PORT or 8080)

    try:
        await agent.run_loop()
    finally:
        await tx_manager.close()
        await runner.cleanup()
        log.warning("SYSTEM_SHUTDOWN_COMPLETE")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
