STATE_DIR_NAME = ".gantt_board"
STORE_FILE = "board.yaml"
STORE_LOCK_FILE = "board.lock"
CONFIG_FILE = "config.yaml"
EVENTS_FILE = "events.jsonl"

DATE_FORMAT = "%Y-%m-%d %H:%M"
SECONDS_PER_DAY = 24 * 60 * 60

LINK_BLOCKS = "blocks"
LINK_IS_BLOCKED_BY = "is blocked by"
LINK_IS_PARENT_OF = "is a parent of"
LINK_IS_CHILD_OF = "is a child of"

DEPENDENCY_LABELS = {LINK_BLOCKS, LINK_IS_BLOCKED_BY}
HIERARCHY_LABELS = {LINK_IS_PARENT_OF, LINK_IS_CHILD_OF}

# Finish-to-start in the chart widget's link vocabulary
CHART_LINK_FINISH_TO_START = "0"

COLOR_DEFAULT = "#bdc3c7"
COLOR_MILESTONE = "#27ae60"
COLOR_SPRINT = "#9b59b6"

DONE_COLUMN_NAME = "done"
SUBTASK_ID_PREFIX = "subtask_"
SUBTASK_STATUS_DONE = 2

GROUP_ID_BASE = -100000

NOTICE_DEDUP_SECONDS = 1.0
SAVE_DEBOUNCE_SECONDS = 0.5

WORKLOAD_BUSY_ABOVE = 2
WORKLOAD_OVERLOADED_ABOVE = 5

MSG_SPRINT_LINK = "Sprints cannot be linked to other tasks"
MSG_SAME_LEVEL = "Rule: only siblings or top-level tasks can be linked."
MSG_CIRCULAR = "Circular dependency detected"
