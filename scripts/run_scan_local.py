import argparse
import asyncio
import sys
from pathlib import Path


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Scan all configured chains and print risk-adjusted yields")
    p.add_argument(
        "--chain",
        type=int,
        action="append",
        help="Only print results for this chain id (repeatable). Default: every scanned chain.",
    )
    p.add_argument(
        "--risk-tolerance",
        type=int,
        default=5,
        help="Maximum pool risk score to include (lower is safer).",
    )
    p.add_argument("--top", type=int, default=10, help="Number of pools to print per chain.")
    p.add_argument(
        "--price",
        metavar="CHAIN:ADDRESS",
        action="append",
        default=[],
        help="Also resolve a token price through the oracle, e.g. 1:0xC02a...6Cc2 (repeatable).",
    )
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    return p.parse_args()


async def _run(args: argparse.Namespace) -> int:
    from src.core.chains import get_chain
    from src.core.errors import YieldAggregatorError
    from src.core.logging import configure_logging
    from src.services.chain_client import ChainManager
    from src.services.pool_catalog import PoolCatalog
    from src.services.price_oracle import PriceOracle
    from src.services.protocol_scanners import AaveV3Scanner

    configure_logging(args.log_level)

    chains = ChainManager()
    connected = await chains.connect_all()
    print(f"Connected chains: {sorted(c for c, ok in connected.items() if ok)}")

    catalog = PoolCatalog([AaveV3Scanner(chains)])
    counts = await catalog.scan_all_chains()

    for chain_id in args.chain or sorted(counts):
        try:
            chain = get_chain(chain_id)
        except YieldAggregatorError as e:
            print(f"\nChain {chain_id}: {e}")
            continue
        pools = catalog.get_optimal_yield(chain_id, 0, args.risk_tolerance)
        print(f"\n{chain.name} ({chain_id}): {len(pools)} pools within risk {args.risk_tolerance}")
        for pool in pools[: args.top]:
            symbol = pool.token0.symbol if pool.token0 else "?"
            print(
                f"  {pool.protocol:<10} {symbol:<10} apy={pool.apy:7.3f}% "
                f"risk={pool.risk_score} score={pool.risk_adjusted_apy:7.3f} tvl=${pool.tvl:,.0f}"
            )

    if args.price:
        oracle = PriceOracle.default(chains)
        for target in args.price:
            chain_str, _, address = target.partition(":")
            try:
                price = await oracle.get_token_price_detail(int(chain_str), address)
            except (ValueError, YieldAggregatorError) as e:
                print(f"Price {target}: unavailable ({e})")
                continue
            print(f"Price {target}: ${price.price_usd:,.4f} via {price.source.value} (confidence {price.confidence})")

    return 0


def main() -> int:
    args = _parse_args()

    # Ensure `import src...` works when running from the repo root.
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
