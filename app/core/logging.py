import logging
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from contextvars import ContextVar

# Correlation id of the request being served
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
# Token subject whose review session is in use
owner_var: ContextVar[str] = ContextVar("owner", default="")

class ReviewJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        for field, var in (("request_id", request_id_var), ("owner", owner_var)):
            value = var.get()
            if value and not log_record.get(field):
                log_record[field] = value

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = (log_record.get("level") or record.levelname).upper()

def setup_logging(level: int = logging.INFO):
    root = logging.getLogger()
    if any(isinstance(h.formatter, ReviewJsonFormatter) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(ReviewJsonFormatter("%(timestamp) %(level) %(name) %(message)"))
    root.addHandler(handler)
    root.setLevel(level)

    # Quiet chatty libraries
    for name in ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)
