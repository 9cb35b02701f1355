"""
Command-line interface for zkbatch.

Provides commands for inspecting batch messages, querying fees and running
a local multi-signer demo.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

import structlog

from zkbatch import __version__
from zkbatch.config import BatchConfig, MessageScheme, Network, set_config
from zkbatch.core.batch import Batch
from zkbatch.core.tokens import Token, TokenSet, format_units
from zkbatch.core.transaction import SignedTransaction, transaction_from_wire
from zkbatch.engine.codec import MessageCodec


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    import logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        stream=sys.stderr,
    )


def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs in JSON format",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="zkbatch",
        description="Multi-signer L2 transaction batches",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Message command
    message_parser = subparsers.add_parser("message", help="Print the canonical message of a batch file")
    message_parser.add_argument(
        "batch_file",
        type=Path,
        help="JSON file with `tokens` and `transactions` in wire form",
    )
    message_parser.add_argument(
        "--scheme",
        choices=[scheme.value for scheme in MessageScheme],
        default=MessageScheme.CONTENT_HASH.value,
        help="Message encoding (default: content_hash)",
    )
    _add_logging_arguments(message_parser)

    # Fee command
    fee_parser = subparsers.add_parser("fee", help="Query the batch fee schedule")
    fee_parser.add_argument(
        "--kinds",
        nargs="+",
        required=True,
        choices=["Transfer", "Withdraw"],
        help="Transaction kind per batch entry",
    )
    fee_parser.add_argument(
        "--accounts",
        nargs="+",
        required=True,
        help="Recipient address per batch entry",
    )
    fee_parser.add_argument(
        "--token",
        default="ETH",
        help="Fee token (default: ETH)",
    )
    fee_parser.add_argument(
        "--network",
        choices=[network.value for network in Network],
        default=Network.LOCALHOST.value,
        help="Rollup network (default: localhost)",
    )
    fee_parser.add_argument(
        "--rpc-url",
        help="Custom JSON-RPC endpoint",
    )
    _add_logging_arguments(fee_parser)

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run a ring of transfers against a local oracle")
    demo_parser.add_argument(
        "--accounts",
        type=int,
        default=3,
        help="Number of accounts in the ring (default: 3)",
    )
    demo_parser.add_argument(
        "--amount",
        type=int,
        default=10 ** 18,
        help="Amount each account sends, in wei (default: 1 ETH)",
    )
    demo_parser.add_argument(
        "--scheme",
        choices=[scheme.value for scheme in MessageScheme],
        default=MessageScheme.CONTENT_HASH.value,
        help="Message encoding (default: content_hash)",
    )
    _add_logging_arguments(demo_parser)

    return parser


def load_batch_file(path: Path) -> tuple:
    """Read a batch file into its token set and batch."""
    data = json.loads(path.read_text())
    tokens = TokenSet.from_dict(data["tokens"])
    batch = Batch()
    for item in data["transactions"]:
        if "tx" in item:
            batch.transactions.append(SignedTransaction.from_wire(item))
        else:
            batch.add(transaction_from_wire(item))
    return tokens, batch


def print_message(args: argparse.Namespace) -> None:
    """Print the canonical message of a batch file."""
    tokens, batch = load_batch_file(args.batch_file)
    message = MessageCodec(tokens).encode(batch, MessageScheme(args.scheme))

    if message.scheme == MessageScheme.LEGACY:
        print(message.text)
    else:
        print("0x" + message.hex())


async def query_fee(args: argparse.Namespace) -> None:
    """Query the batch fee over JSON-RPC."""
    from zkbatch.provider.rpc import RpcProvider

    if len(args.kinds) != len(args.accounts):
        print("Error: --kinds and --accounts must have the same length")
        sys.exit(1)

    config = BatchConfig(network=Network(args.network), rpc_url=args.rpc_url)
    provider = RpcProvider(config)
    await provider.connect()
    try:
        tokens = await provider.get_tokens()
        total_fee = await provider.get_txs_batch_fee(args.kinds, args.accounts, args.token)
        token = tokens.resolve(args.token)
    finally:
        await provider.disconnect()

    print(f"Total fee: {total_fee} ({format_units(total_fee, token.decimals)} {token.symbol})")


async def run_demo(args: argparse.Namespace) -> None:
    """Run the ring scenario against an in-process oracle."""
    from zkbatch.harness.tester import BatchTester, funded_wallet
    from zkbatch.provider.local import LocalOracle

    if args.accounts < 2:
        print("Error: --accounts must be at least 2")
        sys.exit(1)

    config = BatchConfig(message_scheme=MessageScheme(args.scheme))
    set_config(config)

    eth = Token(id=0, symbol="ETH", decimals=18)
    oracle = LocalOracle(TokenSet([eth]))
    await oracle.connect()

    deposit = 10 * args.amount
    wallets = [await funded_wallet(oracle, eth.symbol, deposit, config) for _ in range(args.accounts)]
    before = [await wallet.get_balance(eth.symbol) for wallet in wallets]

    tester = BatchTester(oracle, config)
    await tester.test_multiple_batch_signers(wallets, eth.symbol, args.amount)

    print(f"zkbatch v{__version__} ring demo ({args.accounts} accounts, {args.scheme} messages)")
    print()
    for i, wallet in enumerate(wallets):
        after = await wallet.get_balance(eth.symbol)
        delta = after - before[i]
        print(f"  {wallet.address}  {format_units(after, eth.decimals):>24} ETH  ({delta:+d} wei)")
    print()
    print(f"Fee paid by {wallets[0].address}: {format_units(tester.running_fee, eth.decimals)} ETH")

    await oracle.disconnect()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Setup logging
    log_level = getattr(args, "log_level", "WARNING")
    log_json = getattr(args, "log_json", False)
    setup_logging(log_level, log_json)

    # Run appropriate command
    if args.command == "message":
        print_message(args)
    elif args.command == "fee":
        asyncio.run(query_fee(args))
    elif args.command == "demo":
        asyncio.run(run_demo(args))


if __name__ == "__main__":
    main()
