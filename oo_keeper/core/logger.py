# /oo_keeper/core/logger.py
import logging
import structlog
from structlog.contextvars import bind_contextvars
import sentry_sdk
from prometheus_client import Counter
from oo_keeper.core.config import settings
import json
import hmac
import hashlib
import os

# --- Prometheus Metrics ---
PROPOSALS_SENT = Counter("oo_keeper_proposals_sent_total", "Total number of proposals submitted", ["identifier"])
DISPUTES_SENT = Counter("oo_keeper_disputes_sent_total", "Total number of disputes submitted", ["identifier"])
SETTLEMENTS_SENT = Counter("oo_keeper_settlements_sent_total", "Total number of settlements submitted", ["identifier"])
ITEM_FAILURES = Counter("oo_keeper_item_failures_total", "Per-item action failures", ["action", "reason"])
UPDATE_FAILURES = Counter("oo_keeper_update_failures_total", "Failed state reconciliations")
ERRORS_LOGGED = Counter("oo_keeper_errors_logged_total", "Total number of errors logged", ["level"])
KILL_TRIGGERED = Counter("kill_triggered_total", "Times the kill switch has halted execution")

SIGNING_KEY = (
    settings.LOG_SIGNING_KEY.get_secret_value().encode()
    if settings.LOG_SIGNING_KEY
    else b"insecure"
)

AUDIT_FILE = os.path.join(settings.SESSION_DIR, "audit.log")


def count_errors(logger, method_name: str, event_dict: dict) -> dict:
    if method_name in ("error", "critical", "exception"):
        ERRORS_LOGGED.labels(method_name).inc()
    return event_dict


def _sign(payload: str) -> str:
    return hmac.new(SIGNING_KEY, payload.encode(), hashlib.sha256).hexdigest()


def sign_and_append(logger, method_name: str, event_dict: dict) -> dict:  # type: ignore[override]
    """Structlog processor that signs each event and appends it to the audit log.

    Every proposal, dispute and settlement the keeper sends passes through
    here, so the audit file is the operator's record of what was submitted
    on its behalf. Lines are ``<json payload>|<hex hmac>`` with sorted keys.
    """
    payload = json.dumps(event_dict, sort_keys=True, default=str)
    sig = _sign(payload)

    # Resolved at call time so tests can monkeypatch AUDIT_FILE.
    audit_file = globals()["AUDIT_FILE"]
    os.makedirs(os.path.dirname(audit_file) or ".", exist_ok=True)
    with open(audit_file, "a", encoding="utf-8") as f:
        f.write(payload + "|" + sig + "\n")

    event_dict["signature"] = sig
    return event_dict


def verify_audit_line(line: str) -> dict:
    """Returns the event of a signed audit line, or raises ValueError if it was tampered with."""
    payload, _, sig = line.rstrip("\n").rpartition("|")
    if not payload or not hmac.compare_digest(_sign(payload), sig):
        raise ValueError("Audit line signature mismatch")
    return json.loads(payload)


def configure_logging():
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN.get_secret_value(), traces_sample_rate=1.0)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            count_errors,
            sign_and_append,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(settings.LOG_LEVEL)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    return structlog.get_logger(name)


def set_cycle_counter(counter: int):
    bind_contextvars(cycle_counter=counter)


def bind_keeper_context(account: str, chain_id: int):
    """Tags every subsequent event with the operator account it acts for."""
    bind_contextvars(account=account, chain_id=chain_id)


configure_logging()
log = get_logger("OOKeeper.System")
