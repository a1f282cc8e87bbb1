# /oo_keeper/core/resilient_rpc.py
# Multi-node AsyncWeb3 provider with majority-consensus reads.

from collections import Counter
from eth_account import Account
from web3 import AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware
from oo_keeper.core.config import settings
from oo_keeper.core.logger import get_logger
from oo_keeper.core.decorators import retriable_network_call

log = get_logger(__name__)


def get_rpc_urls_from_env():
    """Collects ETH_RPC_URL_n settings in order, then any extra rpc_urls."""
    urls = []
    i = 1
    while (url := getattr(settings, f'ETH_RPC_URL_{i}', None)):
        urls.append(url.get_secret_value())
        i += 1
    return urls + [u for u in settings.rpc_urls if u not in urls]


class ResilientWeb3Provider:
    def __init__(self, rpc_urls: list[str] | None = None):
        self.rpc_urls = rpc_urls if rpc_urls is not None else get_rpc_urls_from_env()
        if len(self.rpc_urls) < 2:
            log.warning("RESILIENCE_DEGRADED_LT_2_RPCS", count=len(self.rpc_urls))

        self.providers: list[AsyncWeb3] = []
        for url in self.rpc_urls:
            provider = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": 10}))
            provider.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self.providers.append(provider)
        self.primary_provider = self.providers[0] if self.providers else None

        key = settings.EXECUTOR_PRIVATE_KEY
        self.account = Account.from_key(key.get_secret_value()) if key else None
        self.address = self.account.address if self.account else None

    async def initialize(self):
        """Drops unreachable nodes. The first reachable one becomes primary."""
        reachable = []
        for provider in self.providers:
            try:
                if await provider.is_connected():
                    reachable.append(provider)
            except Exception as e:
                log.error("RPC_NODE_UNREACHABLE", url=provider.provider.endpoint_uri, error=str(e))
        if not reachable:
            raise ConnectionError("All RPC nodes are unreachable.")
        self.providers = reachable
        self.primary_provider = reachable[0]
        log.info("RESILIENT_WEB3_PROVIDER_INITIALIZED", rpc_count=len(self.providers), address=self.address)

    def get_primary_provider(self) -> AsyncWeb3:
        """Returns the primary provider, used for sending transactions and event scans."""
        return self.primary_provider

    @retriable_network_call
    async def call_consensus(self, contract_address: str, contract_abi: list, function_name: str, *args, call_params: dict | None = None):
        results = []
        for provider in self.providers:
            try:
                provider_contract = provider.eth.contract(address=contract_address, abi=contract_abi)
                func = getattr(provider_contract.functions, function_name)
                result = await func(*args).call(call_params or {})
                results.append(result)
            except Exception as e:
                log.error("RPC_CONSENSUS_CALL_FAILED", url=provider.provider.endpoint_uri, error=str(e))
                continue

        if not results:
            raise ConnectionError(f"Consensus call {function_name} failed on all RPC nodes.")

        result, count = Counter(tuple(r) if isinstance(r, list) else r for r in results).most_common(1)[0]

        if count <= len(results) / 2:
            raise ValueError(f"Consensus failed: No majority result. Results: {results}")

        log.debug("RPC_CONSENSUS_SUCCESS", function=function_name, result=result, count=count, total=len(results))
        return result
