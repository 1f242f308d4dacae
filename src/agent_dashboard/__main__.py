"""Allow ``python -m agent_dashboard``."""

import sys

from .cli import main

sys.exit(main())
