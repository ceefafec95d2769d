STATE_DIR_NAME = ".predeploy"
CONFIG_FILE = "config.yaml"
TASKS_FILE = "tasks.yaml"

SETTINGS_PREFIX = "predeploy"
PRE_DEPLOY_TASK_KEY = "preDeployTask"

DEFAULT_TASK_SOURCE = "shell"
DEFAULT_MAX_TASK_WORKERS = 4

# Output lines longer than this are truncated before reaching the output channel.
MAX_OUTPUT_LINE_CHARS = 2000

DEPLOY_ANYWAY_TITLE = "Deploy Anyway"
OPEN_SETTINGS_TITLE = "Open Settings"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 2
