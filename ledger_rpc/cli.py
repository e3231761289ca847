from __future__ import annotations
import argparse, asyncio, logging, sys
from web3 import Web3

from .config import CHAINS, load_settings
from .errors import ClassifiedError, LedgerRPCError, NoWorkingEndpoint, TransactionUnconfirmed, describe_error
from .logging_config import setup_logging
from .session import LedgerSession

CHAIN_CHOICES = [c for c in CHAINS if c != "defaults"]

def fmt_latency(seconds) -> str:
    return "Failed" if seconds is None else f"{seconds * 1000:.0f}ms"

async def cmd_status(session: LedgerSession, args) -> int:
    records = await session.pool.health_snapshot()
    info = session.pool.configuration_info()
    print(f"[rpc] {session.settings.chain}: {info['total_endpoints']} endpoints")
    for rec in records:
        mark = " OK " if rec.usable else "FAIL"
        note = f"  ({rec.error})" if rec.error else ""
        print(f"  [{mark}] {rec.address:<48} {fmt_latency(rec.latency):>8}{note}")
    if info["custom_rpc"]:
        print(f"  custom rpc: {info['custom_rpc']}")
    if info["wss_endpoint"]:
        print(f"  websocket:  {info['wss_endpoint']}")
    return 0 if any(r.usable for r in records) else 1

async def cmd_find(session: LedgerSession, args) -> int:
    ep = await session.pool.find_working()
    print(f"[rpc] {session.settings.chain} using {ep}")
    return 0

async def cmd_gas(session: LedgerSession, args) -> int:
    ep = await session.pool.find_working()
    run = session.executor.execute_with_retry
    cid = await run(session.ledger.chain_id)
    if cid != session.settings.chain_id:
        print(f"[WARN] ChainId mismatch: got {cid}, expect {session.settings.chain_id}")
    block = await run(session.ledger.block_number)
    gas = await session.pipeline.get_gas_price_with_retry()
    print(f"[OK] {session.settings.chain} connected via {session.pool.current_endpoint()} (probed {ep})")
    print(f"  chain_id: {cid}")
    print(f"  latest block: {block}")
    print(f"  gas_price: {Web3.from_wei(gas, 'gwei')} gwei")
    return 0

async def cmd_receipt(session: LedgerSession, args) -> int:
    await session.pool.find_working()
    receipt = await session.pipeline.confirm(args.tx_hash, interval=args.interval, max_attempts=args.attempts)
    status = "success" if receipt.get("status") == 1 else "reverted"
    print(f"[OK] {args.tx_hash}")
    print(f"  status: {status}")
    print(f"  block: {receipt.get('blockNumber')}")
    print(f"  gas used: {receipt.get('gasUsed')}")
    return 0 if status == "success" else 1

COMMANDS = {
    "status": cmd_status,
    "find": cmd_find,
    "gas": cmd_gas,
    "receipt": cmd_receipt,
}

async def _run(args) -> int:
    session = LedgerSession(load_settings(args.chain))
    try:
        return await COMMANDS[args.cmd](session, args)
    finally:
        await session.close()

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ledger-rpc",
        description="Probe, fail over between and query ledger RPC endpoints"
    )
    p.add_argument("--chain", default="polygon", choices=CHAIN_CHOICES, help="Which chain (default: polygon)")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    p.add_argument("--log-file", default=None, help="also log to this file")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Probe every endpoint (read + write support) with latency")
    sub.add_parser("find", help="Find the first working endpoint in priority order")
    sub.add_parser("gas", help="chain id, latest block and gas price via the working endpoint")
    sp = sub.add_parser("receipt", help="Wait for a transaction receipt")
    sp.add_argument("tx_hash", help="0x-prefixed transaction hash")
    sp.add_argument("--interval", type=float, default=2.0, help="seconds between checks (default 2)")
    sp.add_argument("--attempts", type=int, default=50, help="max receipt checks (default 50)")
    return p

def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING, log_file=args.log_file)
    try:
        return asyncio.run(_run(args))
    except NoWorkingEndpoint as e:
        print(f"[FAIL] {e}", flush=True)
        return 2
    except TransactionUnconfirmed as e:
        print(f"[PENDING] {e}", flush=True)
        return 3
    except ClassifiedError as e:
        print(f"[FAIL] {describe_error(e)} ({e})", flush=True)
        return 1
    except LedgerRPCError as e:
        print(f"[FAIL] {e}", flush=True)
        return 1
    except KeyboardInterrupt:
        print("\n[ABORT] interrupted by user.", flush=True)
        return 130

if __name__ == "__main__":
    sys.exit(main())
