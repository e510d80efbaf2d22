"""Constants for pipeline routes."""

DEFAULT_RUN_LIMIT = 20
MAX_RUN_LIMIT = 100

PIPELINE_QUEUE_FULL_DETAIL = "Pipeline queue is full, try again shortly"
