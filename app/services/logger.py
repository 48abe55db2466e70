"""Centralized logging service for debugging and monitoring."""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from app.config import settings

# Create logs directory
LOG_DIR = Path("logs")
LOG_DIR.mkdir(exist_ok=True)

APP_LOG_LEVEL = getattr(logging, settings.app_log_level.upper(), logging.INFO)
NOISY_LOG_LEVEL = getattr(logging, settings.noisy_log_level.upper(), logging.WARNING)

logging.basicConfig(
    level=APP_LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(LOG_DIR / "deepsearch.log"),
        logging.StreamHandler(),
    ],
)

# Reduce noise from framework/network libraries unless explicitly overridden.
for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "asyncio",
    "trafilatura",
):
    logging.getLogger(logger_name).setLevel(NOISY_LOG_LEVEL)

logger = logging.getLogger("deepsearch")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_llm_call(
    model: str,
    caller: str,
    step: int,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    finish_reason: Optional[str] = None,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log one streamed model invocation (one reasoning step)."""
    call_data = {
        "timestamp": _now(),
        "model": model,
        "caller": caller,
        "step": step,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "duration_ms": duration_ms,
        "finish_reason": finish_reason,
        "status": status,
        "error": error,
    }
    logger.info(f"LLM_CALL: {json.dumps(call_data)}")


def log_tool_call(
    tool_name: str,
    tool_call_id: str,
    status: str,
    duration_ms: int = 0,
    args: Optional[dict] = None,
    error: Optional[str] = None,
) -> None:
    """Log a tool execution inside the reasoning loop."""
    tool_data = {
        "timestamp": _now(),
        "tool_name": tool_name,
        "tool_call_id": tool_call_id,
        "status": status,
        "duration_ms": duration_ms,
        "args": args,
        "error": error,
    }
    logger.info(f"TOOL_CALL: {json.dumps(tool_data, default=str)}")


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a database operation."""
    op_data = {
        "timestamp": _now(),
        "operation": operation,
        "table": table,
        "status": status,
        "details": details,
        "error": error,
    }
    logger.info(f"DB_OPERATION: {json.dumps(op_data)}")


def log_event(
    event_type: str,
    message: str,
    **kwargs: Any,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {json.dumps(event_data, default=str)}")
