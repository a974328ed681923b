"""Command-line interface for operating the reputation store and the gate"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List

from loguru import logger

from .address import HttpAddressResolver
from .arbiter import HttpArbiter
from .circuit_breaker import CircuitBreaker
from .config import ARBITER_URL, DEFAULT_LOG_FILE, DEFAULT_REQUEST_TIMEOUT, DEFAULT_STORE_FILE
from .exceptions import FetchGuardError, RateLimitError
from .gate import RateLimitGate
from .logging_config import setup_logging
from .models import IPReputationRecord, RiskLevel, ViolationKind
from .reputation import ReputationAggregator
from .storage import JsonFileReputationStore


def _format_record(record: IPReputationRecord) -> str:
    blocked = record.blocked_until.isoformat() if record.blocked_until else "-"
    return (
        f"{record.address:<40} {record.risk_level.value:<9} "
        f"auth={record.failed_auth_attempts:<4} rate={record.rate_limit_violations:<4} "
        f"suspicious={record.suspicious_patterns:<4} blocked_until={blocked}"
    )


async def show_stats(aggregator: ReputationAggregator) -> None:
    stats = await aggregator.stats()
    logger.info("=" * 60)
    logger.info("IP REPUTATION SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total IPs tracked: {stats.total_addresses}")
    logger.info(f"Currently blocked: {stats.blocked}")
    logger.info(f"High risk IPs:     {stats.high_risk} (critical: {stats.critical})")
    logger.info(f"Total violations:  {stats.total_violations}")
    for level, count in stats.risk_distribution.items():
        logger.info(f"   • {level.value:<9} {count}")


async def list_records(
    aggregator: ReputationAggregator, risk: str = None, blocked_only: bool = False
) -> List[IPReputationRecord]:
    risk_level = RiskLevel(risk) if risk else None
    records = await aggregator.list_records(risk_level=risk_level, blocked_only=blocked_only)
    if not records:
        logger.info("No matching addresses")
    for record in records:
        logger.info(_format_record(record))
    return records


async def check_endpoint(
    endpoint: str,
    arbiter_url: str,
    identity: str = None,
    address: str = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> bool:
    """Run one gate check against a remote arbiter and report the decision"""
    gate = RateLimitGate(
        arbiter=HttpArbiter(url=arbiter_url, timeout=timeout),
        address_resolver=HttpAddressResolver(timeout=timeout),
        identity=identity,
        circuit_breaker=CircuitBreaker(name="arbiter", ignored_exceptions=(RateLimitError,)),
    )
    decision = await gate.check_rate_limit(endpoint, address=address)

    if decision.degraded:
        logger.warning(f"⚠️ {endpoint}: allowed (degraded, {decision.reason})")
    elif decision.allowed:
        logger.success(f"✓ {endpoint}: allowed, remaining={decision.remaining}")
    else:
        logger.error(f"❌ {endpoint}: denied, retry after {decision.retry_after}s")
    return decision.allowed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="fetchguard - IP reputation and rate-limit operator tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument(
        "--store", type=str, default=str(DEFAULT_STORE_FILE), help="Reputation store file"
    )
    config_group.add_argument("--verbose", action="store_true", help="Debug logging")
    config_group.add_argument("--log-file", type=str, help="Log file path")
    config_group.add_argument(
        "--json-logs", action="store_true", help="Structured JSON log lines on stdout"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("stats", help="Show aggregate reputation figures")

    list_cmd = commands.add_parser("list", help="List tracked addresses")
    list_cmd.add_argument("--risk", choices=[level.value for level in RiskLevel])
    list_cmd.add_argument("--blocked", action="store_true", help="Only currently blocked")

    report_cmd = commands.add_parser("report", help="Record a violation for an address")
    report_cmd.add_argument("address")
    report_cmd.add_argument("kind", choices=[kind.value for kind in ViolationKind])

    for name, help_text in (
        ("unblock", "Lift the block on an address"),
        ("reset", "Reset an address to a clean reputation"),
        ("delete", "Stop tracking an address"),
    ):
        admin_cmd = commands.add_parser(name, help=help_text)
        admin_cmd.add_argument("address")

    check_cmd = commands.add_parser("check", help="Ask the arbiter about an endpoint")
    check_cmd.add_argument("endpoint")
    check_cmd.add_argument("--arbiter-url", default=ARBITER_URL)
    check_cmd.add_argument("--identity", help="Caller identity (user id)")
    check_cmd.add_argument("--address", help="Explicit client address")
    check_cmd.add_argument("--timeout", type=float, default=DEFAULT_REQUEST_TIMEOUT)

    return parser


def main() -> None:
    """Main CLI entry point"""
    args = build_parser().parse_args()

    log_file = Path(args.log_file) if args.log_file else DEFAULT_LOG_FILE
    setup_logging(verbose=args.verbose, log_file=log_file, json_logs=args.json_logs)

    aggregator = ReputationAggregator(JsonFileReputationStore(Path(args.store)))

    async def run() -> int:
        if args.command == "stats":
            await show_stats(aggregator)
        elif args.command == "list":
            await list_records(aggregator, risk=args.risk, blocked_only=args.blocked)
        elif args.command == "report":
            record = await aggregator.apply_violation(args.address, args.kind)
            logger.info(_format_record(record))
        elif args.command in ("unblock", "reset"):
            operation = getattr(aggregator, args.command)
            record = await operation(args.address)
            if record is None:
                logger.error(f"Address not tracked: {args.address}")
                return 1
            logger.info(_format_record(record))
        elif args.command == "delete":
            if not await aggregator.delete(args.address):
                logger.error(f"Address not tracked: {args.address}")
                return 1
        elif args.command == "check":
            allowed = await check_endpoint(
                args.endpoint,
                arbiter_url=args.arbiter_url,
                identity=args.identity,
                address=args.address,
                timeout=args.timeout,
            )
            return 0 if allowed else 2
        return 0

    try:
        exit_code = asyncio.run(run())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(1)
    except FetchGuardError as e:
        logger.error(f"❌ {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
