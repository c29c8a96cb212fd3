"""Command implementations behind the ``gate`` CLI. Each ``run_*`` returns an exit code."""
