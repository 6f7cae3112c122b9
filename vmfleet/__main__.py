"""Allow ``python -m vmfleet``."""

from vmfleet.cli import main

raise SystemExit(main())
