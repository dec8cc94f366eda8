import logging
import os
import opentelemetry.trace
from azure.monitor.opentelemetry import configure_azure_monitor

LOGGER_NAME = "facility_api"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_log_level(value):
    """Map a LOG_LEVEL setting such as "debug" or "WARNING" to a logging level, INFO if unknown."""
    level = logging.getLevelName((value or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


LOG_LEVEL = resolve_log_level(os.environ.get("LOG_LEVEL"))

# Only export to Application Insights when hosted by the Functions runtime,
# and only records from the facility_api logger tree
if os.environ.get("FUNCTIONS_WORKER_RUNTIME"):
    try:
        configure_azure_monitor(logger_name=LOGGER_NAME)
        logging.info("Azure Monitor OpenTelemetry configured successfully")
    except Exception as e:
        logging.error(f"Error configuring Azure Monitor: {str(e)}")

tracer = opentelemetry.trace.get_tracer(LOGGER_NAME)

logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(LOG_LEVEL)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)


def get_child_logger(name):
    """Get a child logger with the given name, e.g. "crud.location" -> facility_api.crud.location."""
    return logger.getChild(name)
