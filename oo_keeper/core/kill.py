# /oo_keeper/core/kill.py
# Operator halt for the keeper. The switch is a GCS blob when a GCP project
# is configured, otherwise a file under SESSION_DIR. Its content records who
# halted the keeper and why, so /status and /healthz can report it.
import os
from datetime import datetime, timezone
from typing import Optional

from google.cloud import storage
from google.api_core.exceptions import NotFound, GoogleAPICallError

from oo_keeper.core.config import settings
from oo_keeper.core.logger import get_logger, KILL_TRIGGERED

log = get_logger(__name__)

IS_GCP_CONFIGURED = bool(settings.GCP_PROJECT_ID)
GCS_BUCKET_NAME = f"{settings.GCP_PROJECT_ID}-oo-keeper-state" if IS_GCP_CONFIGURED else ""
KILL_SWITCH_BLOB_NAME = "OO_KEEPER_KILL_SWITCH"
KILL_SWITCH_FILE = os.path.join(settings.SESSION_DIR, ".keeper_halted")

_storage_client = None


class KillSwitchActiveError(Exception):
    def __init__(self, reason: str):
        super().__init__(f"Keeper halted: {reason}")
        self.reason = reason


def get_gcs_client():
    global _storage_client
    if _storage_client is None and IS_GCP_CONFIGURED:
        try:
            _storage_client = storage.Client()
        except Exception as e:
            log.critical("GCS_CLIENT_INITIALIZATION_FAILED", error=str(e))
            return None
    return _storage_client


def _parse_reason(content: str) -> str:
    for line in content.splitlines():
        if line.startswith("REASON: "):
            return line[len("REASON: "):]
    return "unspecified"


def kill_switch_reason() -> Optional[str]:
    """Why the keeper is halted, or None while it is free to act."""
    client = get_gcs_client()
    if client:
        try:
            blob = client.bucket(GCS_BUCKET_NAME).blob(KILL_SWITCH_BLOB_NAME)
            return _parse_reason(blob.download_as_text())
        except NotFound:
            return None
        except GoogleAPICallError as e:
            # An unreadable switch counts as set.
            log.critical("GCS_KILL_SWITCH_CHECK_FAILED", error=str(e))
            return f"kill switch unreadable: {e}"
    try:
        with open(KILL_SWITCH_FILE) as f:
            return _parse_reason(f.read())
    except FileNotFoundError:
        return None


def activate_kill_switch(reason: str, actor: str = "operator"):
    timestamp = datetime.now(timezone.utc).isoformat()
    content = f"ACTIVATED at {timestamp}\nBY: {actor}\nREASON: {reason}\n"

    client = get_gcs_client()
    if client:
        try:
            bucket = client.bucket(GCS_BUCKET_NAME)
            if not bucket.exists():
                bucket.create(location=settings.GCP_REGION)
            bucket.blob(KILL_SWITCH_BLOB_NAME).upload_from_string(content, content_type="text/plain")
            log.critical("GCS_KILL_SWITCH_ACTIVATED", reason=reason, actor=actor, bucket=GCS_BUCKET_NAME)
        except GoogleAPICallError as e:
            log.critical("GCS_KILL_SWITCH_ACTIVATION_FAILED", error=str(e))
        return
    os.makedirs(os.path.dirname(KILL_SWITCH_FILE), exist_ok=True)
    with open(KILL_SWITCH_FILE, "w") as f:
        f.write(content)
    log.critical("LOCAL_KILL_SWITCH_ACTIVATED", reason=reason, actor=actor)


def deactivate_kill_switch(actor: str = "operator"):
    client = get_gcs_client()
    if client:
        try:
            client.bucket(GCS_BUCKET_NAME).blob(KILL_SWITCH_BLOB_NAME).delete()
            log.warning("GCS_KILL_SWITCH_DEACTIVATED", actor=actor, bucket=GCS_BUCKET_NAME)
        except NotFound:
            pass
        except GoogleAPICallError as e:
            log.critical("GCS_KILL_SWITCH_DEACTIVATION_FAILED", error=str(e))
        return
    if os.path.exists(KILL_SWITCH_FILE):
        os.remove(KILL_SWITCH_FILE)
        log.warning("LOCAL_KILL_SWITCH_DEACTIVATED", actor=actor)


def check():
    """Raises KillSwitchActiveError when the keeper has been halted."""
    reason = kill_switch_reason()
    if reason is not None:
        KILL_TRIGGERED.inc()
        raise KillSwitchActiveError(reason)
