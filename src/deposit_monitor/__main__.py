"""Allow running with ``python -m deposit_monitor``."""

from deposit_monitor.main import main

main()
