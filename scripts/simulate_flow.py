#!/usr/bin/env python3
"""Run a withdrawal or NFT purchase end to end against the dry-run backend.

Usage:
    python scripts/simulate_flow.py withdrawal --asset ETH --amount 0.5 \
        --address 0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed
    python scripts/simulate_flow.py nft --listing listing-1 \
        --address 0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed
    python scripts/simulate_flow.py withdrawal --statuses pending,processing --budget 2
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from transferflow.backends.dryrun import DryRunBackend
from transferflow.config import get_settings
from transferflow.errors import FlowError
from transferflow.flow import FlowController
from transferflow.models import TransferPurpose

logger = logging.getLogger("simulate_flow")

DEFAULT_ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


async def run(args) -> int:
    settings = get_settings().model_copy(
        update={"poll_interval": args.interval, "poll_budget": args.budget}
    )
    logger.debug(f"Settings: {settings.get_safe_dict()}")
    backend = DryRunBackend(
        otp_code=settings.dry_run_otp_code,
        status_script=args.statuses.split(","),
    )
    purpose = TransferPurpose.NFT_PURCHASE if args.flow == "nft" else TransferPurpose.WITHDRAWAL
    flow = FlowController(purpose, backend, settings=settings)

    try:
        if purpose == TransferPurpose.NFT_PURCHASE:
            await flow.select_asset(args.listing)
        else:
            await flow.select_asset(args.asset)
            flow.set_amount(args.amount)

        flow.set_address(args.address, args.memo)
        quote = await flow.refresh_fee()
        if quote:
            logger.info(
                f"Fee {quote.total_fee} (fallback={quote.is_fallback}), "
                f"receive {quote.receive_amount}, total cost {quote.total_cost}"
            )

        request = flow.proceed()
        logger.info(f"Request {request.request_id}: {request.amount} {request.asset_id} -> {request.destination.address}")

        if purpose == TransferPurpose.WITHDRAWAL:
            await flow.request_code()
            await flow.authorize(settings.dry_run_otp_code)
        else:
            await flow.authorize()

        state = await flow.confirm()
    except FlowError as e:
        logger.error(f"Flow stopped: {e.kind.value}/{e.reason.value}: {e.message}")
        return 1
    finally:
        flow.dispose()

    logger.info(f"Final step: {state.step.value}, operation {state.operation_id}")
    if state.operation_status:
        logger.info(f"Operation status: {state.operation_status.value}, tx {state.tx_hash}")
    if state.advisory:
        logger.warning(state.advisory.message)
    if state.submission_error:
        logger.error(f"{state.submission_error.reason.value}: {state.submission_error.message}")
        return 1
    return 0


def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Simulate a transfer flow")
    parser.add_argument("flow", choices=["withdrawal", "nft"], help="Flow to run")
    parser.add_argument("--asset", default="ETH", help="Asset to withdraw")
    parser.add_argument("--amount", default="0.5", help="Amount to withdraw")
    parser.add_argument("--listing", default="listing-1", help="NFT listing id")
    parser.add_argument("--address", default=DEFAULT_ADDRESS, help="Destination address")
    parser.add_argument("--memo", default=None, help="Destination tag / memo")
    parser.add_argument(
        "--statuses",
        default="pending,processing,completed",
        help="Comma-separated status sequence reported by the dry-run exchange",
    )
    parser.add_argument("--interval", type=float, default=0.5, help="Poll interval in seconds")
    parser.add_argument("--budget", type=float, default=10.0, help="Poll budget in seconds")

    args = parser.parse_args()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
