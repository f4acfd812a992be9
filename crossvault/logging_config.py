"""
Logging Infrastructure

Structured JSON logging. Every record carries
{timestamp, level, component, message, context?}; records go to stdout,
errors are duplicated on stderr, with optional rotating-file and
CloudWatch sinks.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone
import structlog
from structlog.types import EventDict, Processor
import boto3
from botocore.exceptions import ClientError


# ============================================================================
# Custom Processors
# ============================================================================

def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO 8601 timestamp to log record"""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def add_log_level(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add log level to log record"""
    level = method_name.upper()
    if level == "WARNING":
        level = "WARN"
    elif level in ("EXCEPTION", "CRITICAL"):
        level = "ERROR"
    event_dict["level"] = level
    return event_dict


def add_component(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Use the logger name as the component field"""
    if "component" not in event_dict:
        event_dict["component"] = getattr(logger, "name", None) or "crossvault"
    return event_dict


def rename_event(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Expose the event text as message and drop an empty context"""
    event_dict["message"] = event_dict.pop("event", "")
    if not event_dict.get("context"):
        event_dict.pop("context", None)
    return event_dict


def order_fields(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Emit the contract fields first"""
    ordered = {}
    for key in ("timestamp", "level", "component", "message", "context"):
        if key in event_dict:
            ordered[key] = event_dict.pop(key)
    ordered.update(event_dict)
    return ordered


# ============================================================================
# CloudWatch Handler
# ============================================================================

class CloudWatchHandler(logging.Handler):
    """
    Sends log records to AWS CloudWatch Logs.

    Batches events and ships them once batch_size records are buffered
    or on flush/close.
    """

    def __init__(
        self,
        log_group: str,
        log_stream: str,
        region: str = "us-east-1",
        batch_size: int = 100,
        client=None
    ):
        super().__init__()
        self.log_group = log_group
        self.log_stream = log_stream
        self.batch_size = batch_size
        self.batch: list = []
        self.sequence_token: Optional[str] = None

        try:
            self.client = client or boto3.client('logs', region_name=region)
            self._ensure_exists(
                self.client.create_log_group, logGroupName=log_group
            )
            self._ensure_exists(
                self.client.create_log_stream, logGroupName=log_group, logStreamName=log_stream
            )
            self.enabled = True
        except Exception as e:
            print(f"CloudWatch initialization failed: {e}", file=sys.stderr)
            self.enabled = False

    @staticmethod
    def _ensure_exists(create, **kwargs):
        try:
            create(**kwargs)
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceAlreadyExistsException':
                raise

    def emit(self, record: logging.LogRecord):
        """Add log record to batch"""
        if not self.enabled:
            return

        try:
            self.batch.append({
                'timestamp': int(record.created * 1000),
                'message': self.format(record)
            })
            if len(self.batch) >= self.batch_size:
                self.flush()
        except Exception:
            self.handleError(record)

    def flush(self):
        """Send batched logs to CloudWatch"""
        if not self.enabled or not self.batch:
            return

        self.batch.sort(key=lambda x: x['timestamp'])
        kwargs = {
            'logGroupName': self.log_group,
            'logStreamName': self.log_stream,
            'logEvents': self.batch
        }
        if self.sequence_token:
            kwargs['sequenceToken'] = self.sequence_token

        try:
            response = self.client.put_log_events(**kwargs)
            self.sequence_token = response.get('nextSequenceToken')
        except Exception as e:
            print(f"CloudWatch flush error: {e}", file=sys.stderr)
        finally:
            self.batch = []

    def close(self):
        """Flush remaining logs before closing"""
        self.flush()
        super().close()


# ============================================================================
# Logging Configuration
# ============================================================================

class LoggingConfig:
    """
    Centralized logging configuration.

    - Structured JSON records via structlog
    - stdout for every record, stderr additionally for errors
    - Optional rotating file and CloudWatch handlers
    """

    def __init__(
        self,
        log_level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_cloudwatch: bool = False,
        cloudwatch_region: str = "us-east-1",
        cloudwatch_log_group: str = "CrossVault",
        cloudwatch_log_stream: Optional[str] = None
    ):
        self.log_level = log_level.upper()
        if self.log_level == "WARN":
            self.log_level = "WARNING"
        self.log_dir = Path(log_dir) if log_dir else None
        self.enable_cloudwatch = enable_cloudwatch
        self.cloudwatch_region = cloudwatch_region
        self.cloudwatch_log_group = cloudwatch_log_group
        self.cloudwatch_log_stream = cloudwatch_log_stream or (
            f"crossvault-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}"
        )

        self._configure_structlog()
        self._configure_stdlib_logging()

    def _configure_structlog(self):
        """Configure structlog with custom processors"""
        processors: list[Processor] = [
            structlog.contextvars.merge_contextvars,
            add_timestamp,
            add_log_level,
            add_component,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            rename_event,
            order_fields,
            structlog.processors.JSONRenderer(default=str)
        ]

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(
                logging.getLevelName(self.log_level)
            ),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )

    def _configure_stdlib_logging(self):
        """Configure standard library logging handlers"""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)
        root_logger.handlers.clear()

        formatter = logging.Formatter('%(message)s')

        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(self.log_level)
        stdout_handler.setFormatter(formatter)
        root_logger.addHandler(stdout_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.ERROR)
        stderr_handler.setFormatter(formatter)
        root_logger.addHandler(stderr_handler)

        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=self.log_dir / "crossvault.log",
                maxBytes=100 * 1024 * 1024,  # 100 MB
                backupCount=10,
                encoding='utf-8'
            )
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        if self.enable_cloudwatch:
            cloudwatch_handler = CloudWatchHandler(
                log_group=self.cloudwatch_log_group,
                log_stream=self.cloudwatch_log_stream,
                region=self.cloudwatch_region,
            )
            cloudwatch_handler.setLevel(logging.INFO)
            cloudwatch_handler.setFormatter(formatter)
            root_logger.addHandler(cloudwatch_handler)

    def get_logger(self, component: str) -> structlog.stdlib.BoundLogger:
        """
        Get a logger instance for a component.

        Args:
            component: Component name (e.g., 'PriceWatcher', 'SettlementOrchestrator')

        Returns:
            Configured structlog logger
        """
        return structlog.get_logger(component)


# ============================================================================
# Global Logger Instance
# ============================================================================

_logging_config: Optional[LoggingConfig] = None


def init_logging(
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    enable_cloudwatch: bool = False,
    cloudwatch_region: str = "us-east-1",
    cloudwatch_log_group: str = "CrossVault",
    cloudwatch_log_stream: Optional[str] = None
) -> LoggingConfig:
    """
    Initialize global logging configuration.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARN, ERROR)
        log_dir: Directory for rotating log files (None disables the file sink)
        enable_cloudwatch: Enable CloudWatch integration
        cloudwatch_region: AWS region for CloudWatch
        cloudwatch_log_group: CloudWatch log group name
        cloudwatch_log_stream: CloudWatch log stream name (auto-generated if None)

    Returns:
        LoggingConfig instance
    """
    global _logging_config
    _logging_config = LoggingConfig(
        log_level=log_level,
        log_dir=log_dir,
        enable_cloudwatch=enable_cloudwatch,
        cloudwatch_region=cloudwatch_region,
        cloudwatch_log_group=cloudwatch_log_group,
        cloudwatch_log_stream=cloudwatch_log_stream
    )
    return _logging_config


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance for a component.

    Auto-initializes logging with defaults if init_logging() was not called.
    """
    global _logging_config
    if _logging_config is None:
        init_logging()
    return _logging_config.get_logger(component)
