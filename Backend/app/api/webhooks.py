# app/api/webhooks.py
"""
Third-party webhooks that end in a realtime notification.

Providers retry on non-2xx responses, so once a payload is accepted every
outcome is acknowledged with 200; only a bad signature is rejected.
"""
import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from app.core.exceptions import AccessError, WebhookSignatureError
from app.core.logging import log

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])


def verify_expo_signature(body: bytes, signature: str, secret: Optional[str]) -> None:
    """`expo-signature` is `sha1=` + hex HMAC-SHA1 of the raw body."""
    if not secret:
        return
    expected = "sha1=" + hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    if not hmac.compare_digest(expected, signature or ""):
        raise WebhookSignatureError("EAS")


def _parse_body(body: bytes) -> Dict[str, Any]:
    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise ValueError("webhook payload must be a JSON object")
    return payload


@router.post("/eas-build")
async def eas_build_webhook(request: Request):
    """EAS build status callback -> `build_update` to the build's owner."""
    body = await request.body()
    secret = request.app.state.settings.webhooks.eas_secret

    try:
        verify_expo_signature(body, request.headers.get("expo-signature", ""), secret)
    except WebhookSignatureError as e:
        log("WEBHOOK", e.message)
        raise AccessError(401, "Unauthorized", e.message)

    try:
        payload = _parse_body(body)
        eas_build_id = payload.get("id")
        status = payload.get("status")
        artifact_url = (payload.get("artifacts") or {}).get("buildUrl")

        if not eas_build_id or not status:
            log("WEBHOOK", "EAS payload without id/status ignored")
            return {"received": True}

        build = await request.app.state.records.find_build(str(eas_build_id))
        if build is None:
            log("WEBHOOK", f"Build not found for webhook: {eas_build_id}")
            return {"received": True}

        delivered = await request.app.state.relay.send_build_update(
            build["user_id"], str(build["id"]), str(status), artifact_url
        )
        log("WEBHOOK", f"build {build['id']} -> {status} ({delivered} socket(s))", user_id=build["user_id"])
        return {"received": True, "processed": True}

    except Exception as e:
        log("WEBHOOK", f"EAS webhook error: {e}")
        return {"received": True, "error": "Processing failed"}


@router.post("/store-update")
async def store_update_webhook(request: Request):
    """App Store Connect / Google Play callback -> `store_update` to the submitter."""
    store = request.headers.get("x-store-type", "unknown")

    try:
        payload = _parse_body(await request.body())
        log("WEBHOOK", f"Store webhook received from {store}")

        submission_id = payload.get("submissionId") or payload.get("id")
        if not submission_id:
            return {"received": True}

        submission = await request.app.state.records.find_submission(str(submission_id))
        if submission is None:
            log("WEBHOOK", f"Submission not found for webhook: {submission_id}")
            return {"received": True}

        await request.app.state.relay.send_store_update(
            submission["user_id"], str(submission["id"]), str(payload.get("status") or "")
        )
        return {"received": True, "processed": True}

    except Exception as e:
        log("WEBHOOK", f"Store webhook error: {e}")
        return {"received": True, "error": "Processing failed"}


@router.get("/health")
async def webhooks_health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
