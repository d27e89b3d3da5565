"""Allow ``python -m qemumac``."""

from qemumac.cli import main

raise SystemExit(main())
