"""Allow ``python -m storesync``."""

import sys

from .cli import main

sys.exit(main())
