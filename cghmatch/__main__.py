"""Entry point for ``python -m cghmatch``."""

import sys

from .cli import main

sys.exit(main())
