"""Allow running as ``python -m kpirecon``."""

import sys

from kpirecon.cli import main

sys.exit(main())
