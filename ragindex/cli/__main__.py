"""Allow ``python -m ragindex.cli`` execution."""

import sys

from ragindex.cli.index import main

sys.exit(main())
