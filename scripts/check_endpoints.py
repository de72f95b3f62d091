#!/usr/bin/env python3
"""Check every configured RPC endpoint of every supported chain.

Each endpoint is asked for eth_chainId directly (no rotation), so a dead
or misconfigured endpoint shows up on its own line.
"""

import asyncio
import sys

from rpcshield.chains import get_network_config, get_supported_chains
from rpcshield.config import get_settings
from rpcshield.errors import RpcShieldError
from rpcshield.transport.base import JsonRpcProvider
from rpcshield.transport.factory import endpoint_headers

# Colors for output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
RESET = "\033[0m"
CHECK = "✓"
CROSS = "✗"


def print_status(name: str, success: bool, message: str = ""):
    """Print status with color."""
    if success:
        print(f"  {GREEN}{CHECK}{RESET} {name}" + (f" - {message}" if message else ""))
    else:
        print(f"  {RED}{CROSS}{RESET} {name}" + (f" - {message}" if message else ""))


async def check_endpoint(url: str, chain_id: int, timeout: float, headers: dict) -> bool:
    """Check one endpoint answers with the expected chain id."""
    provider = JsonRpcProvider(url, chain_id, timeout=timeout, headers=headers)
    try:
        reported = await provider.get_chain_id()
    except RpcShieldError as e:
        print_status(url, False, str(e))
        return False

    if reported != chain_id:
        print_status(url, False, f"reports chain {reported}, expected {chain_id}")
        return False

    print_status(url, True, f"chain {reported}")
    return True


async def main():
    """Run endpoint checks for all chains."""
    settings = get_settings()

    print("=" * 60)
    print("     RPC ENDPOINT CHECK")
    print("=" * 60)

    results = {}
    for chain_id in get_supported_chains():
        network = get_network_config(chain_id, settings)
        print(f"\n{network.name} ({chain_id})")
        for url in network.rpc_urls:
            results[url] = await check_endpoint(
                url, chain_id, settings.endpoint_timeout, endpoint_headers(settings)
            )

    passed = sum(1 for ok in results.values() if ok)
    total = len(results)

    print()
    if passed == total:
        print(f"  {GREEN}All {total} endpoints reachable!{RESET}")
        return 0
    print(f"  {YELLOW}{passed}/{total} endpoints reachable{RESET}")
    return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
