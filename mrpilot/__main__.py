"""Entry point for `python -m mrpilot`.

Enable execution of the mrpilot package as a module using the Python -m flag.
This module imports and invokes the review CLI.

Usage:
    python -m mrpilot <mr_url_or_id> [options]
"""

from mrpilot.cli import main

if __name__ == "__main__":
    main()
