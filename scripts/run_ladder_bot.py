#!/usr/bin/env python3
"""
Run the Ladder Market Maker

This script provides a command-line interface to run the ladder bot for one
pair against the in-memory paper venue. The mid price can come from a paper
constant-product pool, a Uniswap quoter sampled on-chain, or the Kraken
ticker.

Usage:
    # Paper pool mid, paper venue (default, no network)
    python scripts/run_ladder_bot.py

    # Kraken mid with the volatility guard
    python scripts/run_ladder_bot.py --mid kraken

    # Sample a Uniswap V3 quoter, falling back to Kraken when crossed
    python scripts/run_ladder_bot.py --mid uniswap --quoter 0xb27308f9F90D607463bb33eA1BeBb41C27CE5AB6

    # Run for a specific duration (in minutes)
    python scripts/run_ladder_bot.py --duration 10

    # Activate / deactivate the kill switch
    python scripts/run_ladder_bot.py --kill
    python scripts/run_ladder_bot.py --resume

Environment Variables:
    POLL_INTERVAL_MS, LEVEL_COUNT, SPREAD_FACTOR, STRETCH_FACTOR,
    SIZE_PROFILE, SIZE_SCALING_FACTOR, PRICE_TOLERANCE, SIZE_TOLERANCE,
    REFRESH_WINDOW_MULTIPLE, MAX_REFERENCE_SPREAD, RPC_URL, CHAIN_ID
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ladder_mm.config import (
    CHAIN_ID,
    KILL_SWITCH_FILE,
    LOGS_DIR,
    PROGRESSION_FACTOR,
    LADDER_STEPS,
    RPC_URL,
    ConfigurationError,
    StrategyConfig,
)
from ladder_mm.maker import (
    CurveSampler,
    KillSwitch,
    LadderBot,
    ReferenceMidPrice,
    SyntheticBookMidPrice,
    build_size_ladder,
)
from ladder_mm.venues import (
    ConstantProductQuoteSource,
    KrakenReferenceVenue,
    PaperVenue,
    UniswapQuoteSource,
    registry_for,
)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the bot."""
    level = logging.DEBUG if verbose else logging.INFO

    # Create formatters
    console_format = "%(asctime)s [%(levelname)s] %(message)s"
    file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))

    # File handler
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOGS_DIR / f"ladder_bot_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(file_format))

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)

    print(f"Logs will be written to: {log_file}")


def build_bot(args: argparse.Namespace, config: StrategyConfig) -> LadderBot:
    """Wire the mid price provider, paper venue and bot for one pair."""
    tokens = registry_for([args.base, args.quote], CHAIN_ID)
    base = tokens.by_symbol(args.base)
    quote = tokens.by_symbol(args.quote)

    venue = PaperVenue(
        base,
        quote,
        initial_base=Decimal(str(args.base_balance)),
        initial_quote=Decimal(str(args.quote_balance)),
        order_ttl_sec=float(config.refresh_window_sec) * 4,
        log_actions=True,
        log_path=str(project_root / "data" / "paper_actions.jsonl"),
    )

    base_ladder = build_size_ladder(Decimal("0.05"), PROGRESSION_FACTOR, LADDER_STEPS, base.decimals)
    quote_ladder = build_size_ladder(
        Decimal("0.05") * Decimal(str(args.pool_price)), PROGRESSION_FACTOR, LADDER_STEPS, quote.decimals
    )

    kraken = KrakenReferenceVenue(base, quote)
    if args.mid == "kraken":
        mid_provider = ReferenceMidPrice(kraken)
    elif args.mid == "uniswap":
        if not args.quoter:
            raise ConfigurationError("--quoter is required with --mid uniswap")
        source = UniswapQuoteSource.from_rpc(RPC_URL, args.quoter, fee=args.fee)
        mid_provider = SyntheticBookMidPrice(
            CurveSampler(source),
            base,
            quote,
            base_ladder,
            quote_ladder,
            stretch=config.stretch_factor,
            fallback=ReferenceMidPrice(kraken),
        )
    else:
        reserve_base = Decimal("1000")
        pool = ConstantProductQuoteSource(
            base, quote, reserve_base, reserve_base * Decimal(str(args.pool_price))
        )
        mid_provider = SyntheticBookMidPrice(
            CurveSampler(pool), base, quote, base_ladder, quote_ladder, stretch=config.stretch_factor
        )

    return LadderBot(
        mid_price_provider=mid_provider,
        balance_source=venue,
        live_book=venue,
        venue=venue,
        base=base,
        quote=quote,
        config=config,
        kill_switch=KillSwitch(KILL_SWITCH_FILE),
    )


async def run_bot(args: argparse.Namespace, config: StrategyConfig) -> None:
    """
    Run the ladder bot until interrupted or the duration elapses.

    Args:
        args: Parsed command-line arguments
        config: Strategy options
    """
    print("\n" + "=" * 70)
    print(f"Starting Ladder Bot {args.base}/{args.quote} (mid={args.mid}, venue=paper)")
    print("=" * 70)
    print("\nConfiguration:")
    print(f"  Levels: {config.level_count}")
    print(f"  Spread factor: {config.spread_factor}")
    print(f"  Interval: {config.poll_interval_ms}ms")
    print(f"  Duration: {args.duration} minutes" if args.duration > 0 else "  Duration: Unlimited")
    print("\nPress Ctrl+C to stop\n")

    bot = build_bot(args, config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bot.stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform
            pass

    bot_task = bot.start()
    try:
        if args.duration > 0:
            try:
                await asyncio.wait_for(asyncio.shield(bot_task), timeout=args.duration * 60)
            except asyncio.TimeoutError:
                print(f"\nDuration limit reached ({args.duration} minutes)")
        else:
            await asyncio.shield(bot_task)
    finally:
        bot.stop()
        await bot_task

        print("\n" + "=" * 70)
        print("Final Status")
        print("=" * 70)

        status = bot.get_status()
        bot_state = status["bot_state"]
        print("\nSession Summary:")
        print(f"  Cycles completed: {bot_state['cycle_count']}")
        print(f"  Cycles skipped: {bot_state['cycles_skipped']}")
        print(f"  Cycles aborted: {bot_state['cycles_aborted']}")
        print(f"  Actions submitted: {bot_state['actions_submitted']}")
        print(f"  Actions failed: {bot_state['actions_failed']}")
        print(f"  Live orders: {status['live_bids']} bids / {status['live_asks']} asks")
        print(f"  Uptime: {bot_state['uptime_seconds']} seconds")
        if bot_state.get("last_error"):
            print(f"\nLast Error: {bot_state['last_error']}")
        print("\n" + "=" * 70)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the ladder market maker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_ladder_bot.py                     # Paper pool mid (default)
  python scripts/run_ladder_bot.py --mid kraken        # Kraken mid
  python scripts/run_ladder_bot.py --duration 10       # Run for 10 minutes
  python scripts/run_ladder_bot.py --kill              # Activate kill switch
  python scripts/run_ladder_bot.py --resume            # Deactivate kill switch
        """,
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--kill", action="store_true", help="Activate kill switch to halt quoting")
    mode_group.add_argument("--resume", action="store_true", help="Deactivate kill switch")

    parser.add_argument("--base", default="WETH", help="Base token symbol (default: WETH)")
    parser.add_argument("--quote", default="USDC", help="Quote token symbol (default: USDC)")
    parser.add_argument(
        "--mid",
        choices=["paper", "kraken", "uniswap"],
        default="paper",
        help="Mid price source (default: paper)",
    )
    parser.add_argument("--quoter", default="", help="Uniswap quoter address for --mid uniswap")
    parser.add_argument("--fee", type=int, default=500, help="Uniswap V3 fee tier (default: 500)")
    parser.add_argument("--pool-price", type=float, default=3000.0, help="Paper pool price (default: 3000)")
    parser.add_argument("--base-balance", type=float, default=2.0, help="Paper base balance (default: 2)")
    parser.add_argument("--quote-balance", type=float, default=6000.0, help="Paper quote balance (default: 6000)")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        metavar="MINUTES",
        help="How long to run in minutes (0 = unlimited, default: 0)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    kill_switch = KillSwitch(KILL_SWITCH_FILE)
    if args.kill:
        kill_switch.activate("CLI --kill flag")
        print(f"\nKill switch ACTIVATED: {KILL_SWITCH_FILE}")
        print("To resume, run: python scripts/run_ladder_bot.py --resume")
        return
    if args.resume:
        if kill_switch.deactivate():
            print("\nKill switch DEACTIVATED")
        else:
            print(f"\nFailed to deactivate kill switch. Try removing: {KILL_SWITCH_FILE}")
        return

    setup_logging(verbose=args.verbose)

    try:
        config = StrategyConfig.from_env()
        asyncio.run(run_bot(args, config))
    except ConfigurationError as e:
        print(f"\nConfiguration error: {e}")
        sys.exit(2)
    except Exception as e:
        print(f"\nFatal error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
