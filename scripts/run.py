# scripts/run.py
import sys

from intuneinv.cli import main

if __name__ == "__main__":
    sys.exit(main())
