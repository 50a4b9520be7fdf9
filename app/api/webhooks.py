"""
Webhook endpoint for GitHub App deliveries.
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.models.api_response import WebhookResponse
from app.models.review import ReviewRequest
from app.models.webhook_log import WebhookLogRecord, WebhookStatus
from app.services.github_client import GitHubClientError, get_github_client_factory
from app.services.review_orchestrator import get_review_orchestrator
from app.services.webhook_log_store import get_webhook_log_store, new_log_id
from app.utils.logging import get_logger, log_error_with_context, log_webhook_event
from app.utils.mentions import should_trigger_review

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

PULL_REQUEST_ACTIONS = {"opened", "synchronize", "reopened"}
COMMENT_ACTIONS = {"created", "edited"}

review_orchestrator = get_review_orchestrator()
webhook_log_store = get_webhook_log_store()
github_factory = get_github_client_factory()


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify a GitHub ``X-Hub-Signature-256`` header.

    Args:
        payload: Raw request payload
        signature: Header value, ``sha256=<hex digest>``
        secret: Shared webhook secret

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature:
        return False

    expected_signature = "sha256=" + hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()

    return hmac.compare_digest(signature, expected_signature)


def _build_log_record(event: Optional[str], delivery_id: Optional[str], body: Dict[str, Any]) -> WebhookLogRecord:
    repository = body.get("repository") or {}
    sender = body.get("sender") or {}
    installation = body.get("installation") or {}
    comment = body.get("comment") or {}
    issue = body.get("issue") or {}
    pull_request = body.get("pull_request") or {}

    if event == "pull_request":
        is_pr = True
        pr_number = pull_request.get("number") or body.get("number")
    else:
        is_pr = bool(issue.get("pull_request"))
        pr_number = issue.get("number") if is_pr else None

    return WebhookLogRecord(
        id=new_log_id(),
        timestamp=datetime.now(timezone.utc),
        event=event,
        delivery_id=delivery_id,
        installation_id=installation.get("id"),
        repository=repository.get("full_name") or "Unknown",
        user=sender.get("login") or "Unknown",
        comment=comment.get("body") or "",
        is_pr=is_pr,
        pr_number=pr_number,
    )


async def _ignore(log_id: str, reason: str) -> WebhookResponse:
    logger.info(f"Ignoring webhook: {reason}", extra={"log_id": log_id})
    await webhook_log_store.append_action(log_id, f"Ignored: {reason}")
    await webhook_log_store.update_status(log_id, WebhookStatus.IGNORED)
    return WebhookResponse(status="ignored", message=reason, log_id=log_id)


async def _handle_pull_request(body: Dict[str, Any], log_id: str) -> WebhookResponse:
    action = body.get("action")
    if action not in PULL_REQUEST_ACTIONS:
        return await _ignore(log_id, f"pull_request action '{action}' not reviewed")

    repository = body["repository"]
    pr_number = body["pull_request"]["number"]
    installation_id = (body.get("installation") or {}).get("id")

    github = github_factory.for_installation(installation_id)
    review_request = ReviewRequest(
        owner=repository["owner"]["login"],
        repo=repository["name"],
        pr_number=pr_number,
        log_id=log_id,
        installation_id=installation_id,
        is_auto_review=True,
    )
    review_orchestrator.spawn(review_request, github)
    await webhook_log_store.append_action(log_id, f"Auto review started for PR #{pr_number}")

    return WebhookResponse(
        status="accepted",
        message=f"Auto review of {review_request.repository}#{pr_number} accepted",
        log_id=log_id,
    )


async def _handle_issue_comment(body: Dict[str, Any], log_id: str) -> WebhookResponse:
    action = body.get("action")
    if action not in COMMENT_ACTIONS:
        return await _ignore(log_id, f"issue_comment action '{action}' not handled")

    issue = body.get("issue") or {}
    if not issue.get("pull_request"):
        return await _ignore(log_id, "comment is not on a pull request")

    comment = body.get("comment") or {}
    comment_body = comment.get("body") or ""
    author = (comment.get("user") or {}).get("login") or ""

    if not should_trigger_review(comment_body, author, settings.bot_username):
        return await _ignore(log_id, "bot not mentioned or comment from bot")

    repository = body["repository"]
    owner = repository["owner"]["login"]
    repo = repository["name"]
    pr_number = issue["number"]
    installation_id = (body.get("installation") or {}).get("id")

    github = github_factory.for_installation(installation_id)

    try:
        await github.add_comment_reaction(owner, repo, pr_number, comment["id"], "eyes")
        await webhook_log_store.append_action(log_id, "Added 👀 reaction")
    except GitHubClientError as e:
        await webhook_log_store.append_action(log_id, f"Could not add reaction: {e}")

    review_request = ReviewRequest(
        owner=owner,
        repo=repo,
        pr_number=pr_number,
        comment_id=comment["id"],
        log_id=log_id,
        installation_id=installation_id,
        user_comment=comment_body,
        requested_by=author,
    )
    review_orchestrator.spawn(review_request, github)
    await webhook_log_store.append_action(log_id, f"Review requested by @{author}")

    return WebhookResponse(
        status="accepted",
        message=f"Review of {review_request.repository}#{pr_number} requested by @{author} accepted",
        log_id=log_id,
    )


@router.post("/webhook", response_model=WebhookResponse)
async def handle_github_webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None, alias="X-GitHub-Event"),
    x_github_delivery: Optional[str] = Header(None, alias="X-GitHub-Delivery"),
    x_hub_signature: Optional[str] = Header(None, alias="X-Hub-Signature-256")
):
    """
    Receive a GitHub webhook delivery.

    This endpoint:
    1. Verifies the signature when a webhook secret is configured
    2. Records the delivery in the webhook log
    3. Spawns a review for PR updates and bot mentions
    4. Returns immediately; the review runs in the background
    """
    payload = await request.body()

    if settings.webhook_secret and not verify_webhook_signature(payload, x_hub_signature, settings.webhook_secret):
        logger.warning("Invalid webhook signature received")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        body: Dict[str, Any] = json.loads(payload or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    record = _build_log_record(x_github_event, x_github_delivery, body)
    await webhook_log_store.record_log(record)
    log_webhook_event(logger, x_github_event or "unknown", body.get("action"), record.repository, record.id)

    try:
        if x_github_event == "pull_request":
            return await _handle_pull_request(body, record.id)
        if x_github_event == "issue_comment":
            return await _handle_issue_comment(body, record.id)
        return await _ignore(record.id, f"event '{x_github_event}' not handled")

    except Exception as e:
        log_error_with_context(logger, "Error handling webhook", e, log_id=record.id)
        await webhook_log_store.update_status(record.id, WebhookStatus.ERROR, error=str(e))
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "log_id": record.id}
        )
