"""Chains served by the routing API."""

from enum import IntEnum


class ChainId(IntEnum):
    MAINNET = 1
    ROPSTEN = 3
    RINKEBY = 4
    GOERLI = 5
    KOVAN = 42
    OPTIMISM = 10
    OPTIMISTIC_KOVAN = 69
    ARBITRUM_ONE = 42161
    ARBITRUM_RINKEBY = 421611
    POLYGON = 137
    POLYGON_MUMBAI = 80001
    BSC = 56


# Every chain with a JSON-RPC provider configured
SUPPORTED_CHAINS: tuple[ChainId, ...] = tuple(ChainId)

# Testnets with too little traffic for meaningful per-chain alarms
CHAINS_NOT_MONITORED: tuple[ChainId, ...] = (ChainId.GOERLI, ChainId.POLYGON_MUMBAI)


def monitored_chains(
    chains: tuple[ChainId, ...] = SUPPORTED_CHAINS,
    excluded: tuple[ChainId, ...] = CHAINS_NOT_MONITORED,
) -> list[ChainId]:
    """Return ``chains`` minus ``excluded``, each chain once, in order."""
    seen: set[ChainId] = set()
    result = []
    for chain in chains:
        if chain in excluded or chain in seen:
            continue
        seen.add(chain)
        result.append(chain)
    return result


def rpc_variable_name(chain: ChainId) -> str:
    return f"WEB3_RPC_{int(chain)}"
