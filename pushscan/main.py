import hashlib
import hmac
import logging
import secrets
import sys

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse

from pushscan.commit_scan import CommitScanHandler
from pushscan.config import Settings, load_settings
from pushscan.errors import ConfigError, PayloadError, SignatureError
from pushscan.full_scan import FullRepoScanHandler
from pushscan.github_client import GitHubApp
from pushscan.log import log_context, mask_secret, setup_logging
from pushscan.scanners.secrets import default_detector

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/github/hook"
REQUEST_ID_BYTES = 16

STATUS_OK = "OK"
STATUS_TEST_RECEIVED = "Test request received"
STATUS_ACCEPTED = "Accepted"
STATUS_MISSING_EVENT_HEADER = "Missing X-GitHub-Event header"
STATUS_MISSING_SIGNATURE = "Missing X-Hub-Signature-256 header"
STATUS_INVALID_SIGNATURE = "Invalid webhook signature"
STATUS_INVALID_PAYLOAD = "Invalid webhook payload"
STATUS_INTERNAL_ERROR = "Internal server error"


def compute_signature(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class EventDispatcher:
    """Verifies webhook deliveries and routes them to handlers by event type."""

    def __init__(self, webhook_secret: str, handlers: list):
        self.webhook_secret = webhook_secret
        self.handlers = list(handlers)

    def verify(self, body: bytes, signature: str) -> None:
        expected = compute_signature(self.webhook_secret, body)
        if not hmac.compare_digest(expected, signature):
            raise SignatureError("invalid webhook signature")

    def dispatch(self, event_type: str, delivery_id: str, body: bytes) -> bool:
        """Run every handler for `event_type`; return False if none matched.

        Every matching handler runs even if an earlier one fails; the first
        error is re-raised afterwards.
        """
        matched = [h for h in self.handlers if event_type in h.handles()]
        first_error = None
        for handler in matched:
            try:
                handler.handle(event_type, delivery_id, body)
            except Exception as e:
                logger.exception("Error processing webhook event in %s", type(handler).__name__)
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
        return bool(matched)


def build_dispatcher(settings: Settings) -> EventDispatcher:
    setup_logging(settings.log.level, settings.log.pretty)
    github_app = GitHubApp(settings.github.app_id, settings.github.private_key, api_url=settings.github.api_url)
    detector = default_detector()
    handlers = [
        CommitScanHandler(github_app, detector, settings.scan.max_file_changes),
        FullRepoScanHandler(
            github_app,
            detector,
            settings.scan.max_file_changes,
            settings.scan.full_scan_timeout,
        ),
    ]
    logger.info(
        "EventDispatcher configured: webhook_secret=%s handlers=%d",
        mask_secret(settings.github.webhook_secret),
        len(handlers),
    )
    return EventDispatcher(settings.github.webhook_secret, handlers)


def _process(dispatcher: EventDispatcher, event_type: str, delivery_id: str, body: bytes, request_id: str) -> bool:
    with log_context(request_id=request_id, delivery_id=delivery_id, event_type=event_type):
        return dispatcher.dispatch(event_type, delivery_id, body)


def create_app(dispatcher: EventDispatcher | None = None) -> FastAPI:
    app = FastAPI(title="PushScan")
    app.state.dispatcher = dispatcher

    def get_dispatcher() -> EventDispatcher:
        if app.state.dispatcher is None:
            app.state.dispatcher = build_dispatcher(load_settings())
        return app.state.dispatcher

    @app.get("/health", response_class=PlainTextResponse)
    def health():
        return STATUS_OK

    @app.api_route("/test", methods=["GET", "POST"], response_class=PlainTextResponse)
    def test():
        logger.debug("Test request received")
        return STATUS_TEST_RECEIVED

    @app.post(WEBHOOK_PATH, response_class=PlainTextResponse)
    @app.post("/", response_class=PlainTextResponse)
    async def webhook(
        request: Request,
        x_github_event: str | None = Header(default=None),
        x_github_delivery: str = Header(default=""),
        x_hub_signature_256: str | None = Header(default=None),
    ):
        request_id = secrets.token_hex(REQUEST_ID_BYTES)
        with log_context(request_id=request_id, delivery_id=x_github_delivery):
            if not x_github_event:
                logger.warning("Missing X-GitHub-Event header")
                return PlainTextResponse(STATUS_MISSING_EVENT_HEADER, status_code=400)
            if not x_hub_signature_256:
                logger.warning("Missing X-Hub-Signature-256 header")
                return PlainTextResponse(STATUS_MISSING_SIGNATURE, status_code=401)

            body = await request.body()
            try:
                dispatcher = get_dispatcher()
            except ConfigError:
                logger.exception("Service is not configured")
                return PlainTextResponse(STATUS_INTERNAL_ERROR, status_code=500)
            try:
                dispatcher.verify(body, x_hub_signature_256)
            except SignatureError:
                logger.warning("Invalid webhook signature")
                return PlainTextResponse(STATUS_INVALID_SIGNATURE, status_code=401)

            try:
                handled = await run_in_threadpool(
                    _process, dispatcher, x_github_event, x_github_delivery, body, request_id
                )
            except PayloadError:
                return PlainTextResponse(STATUS_INVALID_PAYLOAD, status_code=400)
            except Exception:
                return PlainTextResponse(STATUS_INTERNAL_ERROR, status_code=500)

            if not handled:
                logger.debug("No handler for event type %s", x_github_event)
                return PlainTextResponse(STATUS_ACCEPTED, status_code=202)
            return STATUS_OK

    return app


app = create_app()


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    app.state.dispatcher = build_dispatcher(settings)
    logger.info("PushScan server starting on port %d", settings.server.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.server.port, log_config=None)


if __name__ == "__main__":
    main()
