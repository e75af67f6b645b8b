DEFAULT_DELAY_MS = 1000
DEFAULT_TRIGGER_TYPE = "default"
DEFAULT_ACTION_TYPE = "default"
DEFAULT_EXECUTION_TOPIC = "flow-executions"
DEFAULT_REQUEUE_DELAY = 1.0
DEFAULT_MAX_REDELIVERIES = 5
DEFAULT_QUEUE_PREFIX = "tenantflow"
DEFAULT_POLL_INTERVAL = 0.05
