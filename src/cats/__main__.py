"""Allow running CATS as ``python -m cats``."""

import sys

from cats.cli import main

sys.exit(main())
