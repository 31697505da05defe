# scripts/create_mints.py
#
#   python scripts/create_mints.py .env.development --test
#
import sys

from qbitflow_bootstrap.cli import create_mints_main

if __name__ == "__main__":
    sys.exit(create_mints_main())
