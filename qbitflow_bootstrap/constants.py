from pathlib import Path

# ─── Network ──────────────────────────────────────────────────────────────────

LAMPORTS_PER_SOL = 1_000_000_000

# Local validator defaults (solana-test-validator).
DEFAULT_RPC_URL = "http://127.0.0.1:8899"
DEFAULT_WS_URL  = "ws://127.0.0.1:8900"

# ─── Program ──────────────────────────────────────────────────────────────────

PROGRAM_NAME = "qbitflow_payment_system"

# Must match AUTHORITY_PDA_SEED in the on-chain program.
AUTHORITY_SEED = b"authority"

AUTHORITY_ACCOUNT = "Authority"

DEFAULT_IDL_PATH     = Path("target/idl") / f"{PROGRAM_NAME}.json"
DEFAULT_PROGRAM_KEYPAIR = Path("target/deploy") / f"{PROGRAM_NAME}-keypair.json"

# ─── Output ───────────────────────────────────────────────────────────────────

DEFAULT_ACCOUNTS_DIR = Path("tests/accounts")
DEFAULT_MANIFEST     = Path("deployed-addresses.json")

# Env files are .env, .env.test, .env.production, ...
ENV_FILE_PATTERN = r"^\.env(\..+)?$"

