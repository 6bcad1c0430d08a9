#!/usr/bin/env python
"""Run the daily_signals job."""
import sys
from datetime import date

from eodsignals.core.logging import setup_logging
from eodsignals.jobs import daily_signals_job

if __name__ == "__main__":
    setup_logging()
    as_of = date.fromisoformat(sys.argv[1]) if len(sys.argv) > 1 else None
    result = daily_signals_job(as_of)
    print(result)
