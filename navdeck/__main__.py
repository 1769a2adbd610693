"""
Main entry point when running the navdeck package with python -m.
"""

import logging
import sys

from .cli import main

if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logging.info("\nExiting...")
        sys.exit(0)
