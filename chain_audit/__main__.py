"""
CLI entry point. Run from project root: python -m chain_audit
"""
import sys
from .audit import main

if __name__ == "__main__":
    sys.exit(main())
