import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError

from qbitflow_bootstrap.config import MintMode, load_config, parse_pubkey
from qbitflow_bootstrap.constants import DEFAULT_ACCOUNTS_DIR, DEFAULT_IDL_PATH, DEFAULT_MANIFEST
from qbitflow_bootstrap.errors import BootstrapError
from qbitflow_bootstrap.pipeline import run_bootstrap, run_create_mints

logger = logging.getLogger("qbitflow_bootstrap")

_FAILURES = (BootstrapError, RPCException, SolanaRpcException, UnconfirmedTxError)


def configure_logging(verbose: int):
    if verbose < 0:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.setLevel(level)


def _common_args(parser: argparse.ArgumentParser):
    parser.add_argument("env_file", type=Path, help="environment file (.env, .env.test, ...)")
    parser.add_argument(
        "--test",
        action="store_true",
        help="read the *_TEST variables (SOLANA_NETWORK_URL_TEST, ...)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)
    parser.add_argument("-q", "--quiet", action="store_const", const=-1, dest="verbose")


def parse_bootstrap_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="qbitflow-bootstrap",
        description="Fund wallets, create test token mints and initialize the program authority.",
    )
    _common_args(parser)
    parser.add_argument("co_signer", help="public key recorded as the authority co-signer")
    parser.add_argument(
        "--mint-mode",
        choices=[mode.value for mode in MintMode],
        default=MintMode.CREATE.value,
        help="'create' makes fresh mints every run, 'reuse' keeps the manifest's mints",
    )
    parser.add_argument(
        "--program-only",
        action="store_true",
        help="only initialize the program authority (no wallets, airdrops or mints)",
    )
    parser.add_argument("--program-id", default=None)
    parser.add_argument("--idl", type=Path, default=DEFAULT_IDL_PATH)
    parser.add_argument("--accounts-dir", type=Path, default=DEFAULT_ACCOUNTS_DIR)
    parser.add_argument("--manifest", type=Path, default=DEFAULT_MANIFEST)
    parser.add_argument("--show-keys", action="store_true", help="print wallet private keys")
    return parser.parse_args(argv)


def parse_create_mints_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="qbitflow-create-mints",
        description="Create the test token mints with the deployer as authority.",
    )
    _common_args(parser)
    return parser.parse_args(argv)


async def _bootstrap(args: argparse.Namespace):
    config = load_config(
        args.env_file,
        args.co_signer,
        test=args.test,
        program_id=parse_pubkey(args.program_id, "program") if args.program_id else None,
        idl_path=args.idl,
        accounts_dir=args.accounts_dir,
        manifest_path=args.manifest,
        mint_mode=MintMode(args.mint_mode),
    )
    async with AsyncClient(config.rpc_url, commitment=Confirmed) as client:
        logger.info("Connection established to Solana cluster.")
        await run_bootstrap(
            config, client, program_only=args.program_only, show_keys=args.show_keys
        )
    print("\n✅ Solana setup complete!")
    print("You can now interact with your deployed tokens and program.")


async def _create_mints(args: argparse.Namespace):
    config = load_config(args.env_file, None, test=args.test)
    async with AsyncClient(config.rpc_url, commitment=Confirmed) as client:
        await run_create_mints(config, client)


def _run(coro_fn, args: argparse.Namespace) -> int:
    configure_logging(args.verbose)
    try:
        asyncio.run(coro_fn(args))
    except _FAILURES as exc:
        logger.error("❌ Setup failed: %s", exc)
        logger.debug("Traceback", exc_info=True)
        return 1
    return 0


def _parse(parse_fn, argv):
    # argparse exits with 2 on bad usage; callers only distinguish 0 and 1
    try:
        return parse_fn(argv), None
    except SystemExit as exc:
        return None, 0 if exc.code in (0, None) else 1


def main(argv: Optional[List[str]] = None) -> int:
    args, status = _parse(parse_bootstrap_args, argv)
    if args is None:
        return status
    return _run(_bootstrap, args)


def create_mints_main(argv: Optional[List[str]] = None) -> int:
    args, status = _parse(parse_create_mints_args, argv)
    if args is None:
        return status
    return _run(_create_mints, args)


if __name__ == "__main__":
    sys.exit(main())
