"""Project-wide constants for the Project Report Compiler."""

LEDGER_DIR_NAME = ".prc-mcp"
LEDGER_FILE_NAME = "ledger.yaml"
LEDGER_VERSION = "1.0.0"

LOOKBACK_WINDOW = 50
MAX_LEDGER_COMMITS = 1000
RECENT_ACTIVITY_DAYS = 30
DEFAULT_TRACK_INTERVAL_SECONDS = 300

MERGE_PREFIX = "merge "
PULL_REQUEST_MARKER = "pull request"

REPORT_TITLE = "Work Report"
REPORT_SIGNATURE = "Generated by Project Report Compiler"
