"""Shared defaults for pipewright."""

DIRECT = "direct"

DEFAULT_MAX_TURNS = 12
DEFAULT_TIMEOUT_HOURS = 2
DEFAULT_HEALTH_WINDOW = 10
DEFAULT_PROBLEM_THRESHOLD = 3

RUN_FLOW_NOW = "run_flow_now"
EXECUTE_STEP = "execute_step"

STATUS_OVERRIDE_KEY = "job_status"
PROMPT_BACKUP_KEY = "queued_prompt_backup"

# Side-channel engine data keys forwarded to handler tools
HANDLER_SIDE_CHANNEL_KEYS = ("source_url", "image_url", "image_file_path")

DEFAULT_INTERVALS = {
    "every_5_minutes": 300,
    "hourly": 3600,
    "every_2_hours": 7200,
    "every_4_hours": 14400,
    "qtrdaily": 21600,
    "twicedaily": 43200,
    "daily": 86400,
    "weekly": 604800,
}
