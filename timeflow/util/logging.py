"""
Structured logging for resolution, tool and store operations.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for resolution runs, tool calls and store lookups."""

    def __init__(self, name: str = "timeflow"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_resolution(self, status: str, text: str, details: Dict[str, Any] = None):
        """Log a resolution run. The user sentence is truncated."""
        log_details = {"text": truncate_payload(text)}
        if details:
            log_details.update(details)

        level = logging.INFO if status in ("started", "success", "cancelled") else logging.ERROR
        self.log_operation("resolve", status, log_details, level=level)

    def log_tool_call(self, tool_name: str, parameters: Dict[str, Any], success: bool,
                      data_count: int = 0, error: str = None):
        """Log a tool execution requested by the extraction capability."""
        log_details = {
            "tool": tool_name,
            "parameters": truncate_payload(parameters),
            "data_count": data_count,
        }
        if error:
            log_details["error"] = truncate_payload(error)

        self.log_operation(f"tool.{tool_name}", "success" if success else "failed", log_details)

    def log_lookup(self, start: str, end: str, count: int, status: str = "success"):
        """Log an event lookup against the store."""
        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("store.lookup", status, {"start": start, "end": end, "count": count}, level=level)

    def log_schema_violation(self, errors: List[Any], raw_output: str = None):
        """Log structured output that failed validation."""
        sanitized_errors = truncate_payload([str(error) for error in errors])
        log_details = {
            "errors": sanitized_errors,
            "error_count": len(sanitized_errors),
        }
        if raw_output is not None:
            log_details["raw_output"] = truncate_payload(raw_output)

        self.log_operation("schema_validation.error", "rejected", log_details, level=logging.ERROR)

    def log_degenerate_span(self, index: int, title: str, action: str):
        """Log an event whose end is not after its start."""
        self.log_operation("postprocess.degenerate_span", action, {"index": index, "title": title},
                           level=logging.WARNING)

    # Plain messages
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)


logger = StructuredLogger()


def truncate_payload(payload: Any, limit: int = 100) -> Any:
    """Cut long strings anywhere in a payload so user sentences stay out of the log."""
    if isinstance(payload, str):
        return payload[:limit] + "..." if len(payload) > limit else payload
    if isinstance(payload, dict):
        return {k: truncate_payload(v, limit) for k, v in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [truncate_payload(item, limit) for item in payload]
    return payload
