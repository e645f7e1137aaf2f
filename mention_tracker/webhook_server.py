"""FastAPI webhook server for Instagram webhooks and internal job triggers."""

import hashlib
import hmac
import json
import logging
from typing import Any, Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .config import Config
from .jobs import ServiceContext, StoryStateJobType, run_party_selection_timeout, run_story_state_worker

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """Header value the platform would send for this payload."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify a webhook signature using HMAC SHA-256.

    Args:
        payload: Raw request body bytes
        signature: X-Hub-Signature-256 header value (format: "sha256=...")
        secret: App secret the payload was signed with

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature.startswith(SIGNATURE_PREFIX):
        logger.warning("Invalid signature format (missing sha256= prefix)")
        return False

    # Timing-safe comparison
    is_valid = hmac.compare_digest(compute_signature(payload, secret), signature)

    if not is_valid:
        logger.warning(f"Signature verification failed. Received: {signature[7:23]}...")

    return is_valid


def entry_account_ids(body: bytes) -> list[str]:
    """Account ids of the entries in a raw body, without trusting it further."""
    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return []
    if not isinstance(payload, dict) or not isinstance(payload.get("entry"), list):
        return []
    return [str(entry["id"]) for entry in payload["entry"] if isinstance(entry, dict) and entry.get("id")]


class StoryStateJobRequest(BaseModel):
    type: StoryStateJobType = StoryStateJobType.BOTH


def create_webhook_app(config: Config, context: ServiceContext) -> FastAPI:
    """Create and configure the FastAPI webhook application.

    Args:
        config: Application configuration
        context: Wired services

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Mention Tracker Webhooks",
        description="Instagram webhook receiver for story mention tracking",
        version="1.0.0",
    )

    async def signing_secrets(body: bytes) -> set[Optional[str]]:
        """Secrets the delivery must verify against; None marks an account without one."""
        fallback = config.instagram.app_secret
        account_ids = entry_account_ids(body)
        if not account_ids:
            return {fallback.get_secret_value()} if fallback else set()
        return {await context.organizations.webhook_secret_for(account_id) for account_id in account_ids}

    def check_cron_secret(provided: Optional[str]) -> None:
        if config.service.cron_secret is None:
            raise HTTPException(status_code=404, detail="Not found")
        expected = config.service.cron_secret.get_secret_value()
        if not provided or not hmac.compare_digest(provided, expected):
            raise HTTPException(status_code=403, detail="Forbidden")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "mention-tracker-webhooks"}

    @app.get("/webhooks/instagram")
    async def verify_subscription(
        mode: Optional[str] = Query(default=None, alias="hub.mode"),
        verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
        challenge: str = Query(default="", alias="hub.challenge"),
    ) -> PlainTextResponse:
        """Subscription handshake: echo the challenge when the token matches."""
        expected = config.instagram.verify_token
        if (
            mode == "subscribe"
            and expected is not None
            and verify_token is not None
            and hmac.compare_digest(verify_token, expected.get_secret_value())
        ):
            logger.info("Webhook subscription verified")
            return PlainTextResponse(challenge)

        logger.warning(f"Webhook verification failed (mode={mode})")
        raise HTTPException(status_code=403, detail="Verification failed")

    @app.post("/webhooks/instagram")
    async def instagram_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
    ) -> JSONResponse:
        """Handle incoming Instagram webhooks.

        Security:
        - Verifies HMAC signature before processing
        - Returns 401 for invalid signatures
        - Processes events in background to return quickly

        Returns:
            200 response immediately, processes events in background
        """
        body = await request.body()
        signature = request.headers.get("X-Hub-Signature-256", "")

        # Verify signature BEFORE any processing
        secrets = await signing_secrets(body)
        if not secrets:
            logger.error("Webhook app secret not configured")
            raise HTTPException(status_code=500, detail="Webhook secret not configured")

        if None in secrets:
            logger.warning("No signing secret for an account in this delivery")
            return JSONResponse({"error": "invalid_signature"}, status_code=401)

        if not all(verify_signature(body, signature, secret) for secret in secrets):
            logger.warning("Rejected Instagram webhook with invalid signature")
            return JSONResponse({"error": "invalid_signature"}, status_code=401)

        # Parse payload (signature verified, safe to parse)
        try:
            payload = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Failed to parse webhook payload: {e}")
            raise HTTPException(status_code=400, detail="Invalid JSON payload")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

        delivery_id = hashlib.sha256(body).hexdigest()[:12]
        logger.info(f"Accepted Instagram webhook object={payload.get('object')}, delivery={delivery_id}")

        # Process in background (return 200 quickly to the platform)
        background_tasks.add_task(context.webhook_handler.handle_payload, payload, delivery_id)

        return JSONResponse({"received": True}, status_code=200)

    @app.post("/jobs/story-state")
    async def story_state_job(
        job: Optional[StoryStateJobRequest] = None,
        x_cron_secret: Optional[str] = Header(default=None),
    ) -> dict[str, Any]:
        """Run the verification and/or expiry sweep."""
        check_cron_secret(x_cron_secret)
        job = job or StoryStateJobRequest()
        return await run_story_state_worker(context, job.type)

    @app.post("/jobs/party-selection-timeout")
    async def party_selection_timeout_job(
        x_cron_secret: Optional[str] = Header(default=None),
    ) -> dict[str, Any]:
        """Run the party selection timeout sweep."""
        check_cron_secret(x_cron_secret)
        return await run_party_selection_timeout(context)

    return app
