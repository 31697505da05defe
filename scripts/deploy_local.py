# scripts/deploy_local.py
#
#   python scripts/deploy_local.py .env.development <CO_SIGNER_PUBKEY> [--test]
#
import sys

from qbitflow_bootstrap.cli import main

if __name__ == "__main__":
    sys.exit(main())
