"""
Financial Blueprint Configuration

Environment-driven settings for the blueprint aggregation engine.
Values are read once at import time.
"""

import os

# Blueprint horizon bounds (months)
DEFAULT_MONTH_COUNT = int(os.getenv("FINANCIALS_DEFAULT_MONTH_COUNT", "36"))
MIN_MONTH_COUNT = int(os.getenv("FINANCIALS_MIN_MONTH_COUNT", "12"))
MAX_MONTH_COUNT = int(os.getenv("FINANCIALS_MAX_MONTH_COUNT", "48"))

# Deepest indent a sanitized line may carry
MAX_INDENT_LEVEL = int(os.getenv("FINANCIALS_MAX_INDENT_LEVEL", "6"))

# Fiscal calendar
DEFAULT_FISCAL_YEAR_START_MONTH = int(os.getenv("FINANCIALS_FISCAL_YEAR_START_MONTH", "1"))
# "end": FY named after the calendar year it ends in; "start": the year it starts in
FISCAL_YEAR_NAMING = os.getenv("FINANCIALS_FISCAL_YEAR_NAMING", "end")

# Dashboard computations
BREAKDOWN_TOP_N = int(os.getenv("FINANCIALS_BREAKDOWN_TOP_N", "10"))
RUN_RATE_WINDOW = int(os.getenv("FINANCIALS_RUN_RATE_WINDOW", "12"))
MAX_TIMELINE_MONTHS = int(os.getenv("FINANCIALS_MAX_TIMELINE_MONTHS", "480"))

# Document store keys
BLUEPRINT_DOCUMENT_KEY = os.getenv("FINANCIALS_BLUEPRINT_KEY", "primary")
