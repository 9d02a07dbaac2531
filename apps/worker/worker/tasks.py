import os

import httpx

from worker.celery_app import celery_app


@celery_app.task
def backfill_member_emails():
    base = os.environ.get("FAMILY_GROCERY_API_BASE_URL", "http://api:8000/v1").rstrip("/")
    token = os.environ.get("INTERNAL_ADMIN_TOKEN", "")
    if not token:
        return {"job": "member_email_backfill", "status": "skipped", "reason": "missing INTERNAL_ADMIN_TOKEN"}

    url = f"{base}/admin/members/backfill-emails"
    try:
        resp = httpx.post(url, headers={"X-Internal-Admin-Token": token}, timeout=60.0)
        resp.raise_for_status()
        return {"job": "member_email_backfill", "status": "ok", "result": resp.json()}
    except Exception as exc:
        return {"job": "member_email_backfill", "status": "error", "error": str(exc)}
