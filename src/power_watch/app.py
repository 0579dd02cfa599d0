"""
AWS Lambda handler for Power Watch.

Routes:
- EventBridge schedule (every minute) -> one evaluation pass (skipped if one is running)
- GET|POST /ping?chat_id=...        -> liveness ping
- GET /check-lights                 -> on-demand evaluation pass, reports completion
- POST /telegram                    -> Telegram webhook (subscriber commands)
- {"test": true}                    -> test notification to the admin chat
"""

import base64
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qs
from zoneinfo import ZoneInfo

from power_watch.commands import SubscriberCommands
from power_watch.config_loader import AppConfig, load_config
from power_watch.dispatcher import NotificationDispatcher
from power_watch.log import log_error, log_event
from power_watch.messages import format_timestamp
from power_watch.notifier import TelegramNotifier
from power_watch.outage_cache import OutageSummaryCache
from power_watch.outage_client import OutageSourceClient
from power_watch.reconciler import StateReconciler
from power_watch.scheduler import EvaluationScheduler
from power_watch.state_store import SubscriberStore
from power_watch.tuya_client import TuyaClient, TuyaLivenessSource


@dataclass
class Application:
    """Long-lived process context: owns every cache and rate-limit map."""

    config: AppConfig
    store: SubscriberStore
    dispatcher: NotificationDispatcher
    outage_cache: OutageSummaryCache
    reconciler: StateReconciler
    scheduler: EvaluationScheduler
    commands: SubscriberCommands
    timezone: ZoneInfo


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except Exception as e:
        log_event("invalid_timezone", level="error", timezone=name, message=str(e))
        return ZoneInfo("UTC")


def build_application(config: AppConfig) -> Application:
    """Wire all components from configuration."""
    timings = config.timings
    timezone = resolve_timezone(config.timezone)

    store = SubscriberStore(config.ddb_table, cache_ttl=timings.store_cache_ttl, timeout=timings.http_timeout)
    notifier = TelegramNotifier(config.telegram.bot_token, timeout=timings.http_timeout)
    dispatcher = NotificationDispatcher(
        notifier,
        batch_size=timings.send_batch_size,
        batch_pause=timings.send_batch_pause,
        dedup_window=timings.dedup_window,
        pinned_refresh_interval=timings.pinned_refresh_interval,
    )
    source = OutageSourceClient(
        config.outage_source.url,
        timeout=config.outage_source.timeout,
        csrf_token=config.outage_source.csrf_token,
        cookie=config.outage_source.cookie,
    )
    outage_cache = OutageSummaryCache(source.fetch, ttl=timings.outage_cache_ttl)
    reconciler = StateReconciler(store, outage_cache, dispatcher, timings, timezone)

    liveness_source = None
    if config.tuya is not None and config.tuya.devices:
        tuya = TuyaClient(config.tuya.endpoint, config.tuya.access_id, config.tuya.access_key)
        liveness_source = TuyaLivenessSource(tuya, config.tuya.devices, reconciler.handle_ping)

    scheduler = EvaluationScheduler(
        store,
        reconciler,
        concurrency=timings.concurrency,
        interval=timings.evaluation_interval,
        startup_delay=timings.startup_delay,
        liveness_source=liveness_source,
    )
    commands = SubscriberCommands(store, reconciler, dispatcher, timezone, cities=config.cities)

    return Application(
        config=config,
        store=store,
        dispatcher=dispatcher,
        outage_cache=outage_cache,
        reconciler=reconciler,
        scheduler=scheduler,
        commands=commands,
        timezone=timezone,
    )


# Reused across warm Lambda invocations
_application: Optional[Application] = None


def get_application() -> Application:
    global _application
    if _application is None:
        _application = build_application(load_config())
    return _application


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body, ensure_ascii=False)}


def _request_path(event: Dict[str, Any]) -> Optional[str]:
    path = event.get("rawPath") or event.get("path")
    if not path:
        return None
    return path.rstrip("/") or "/"


def _request_body(event: Dict[str, Any]) -> Dict[str, Any]:
    raw = event.get("body")
    if not raw:
        return {}
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        body = json.loads(raw)
    except ValueError:
        # application/x-www-form-urlencoded
        body = {k: v[0] for k, v in parse_qs(raw).items()}
    return body if isinstance(body, dict) else {}


def handle_ping_request(app: Application, event: Dict[str, Any]) -> Dict[str, Any]:
    params = event.get("queryStringParameters") or {}
    chat_id = params.get("chat_id") or _request_body(event).get("chat_id")
    if not chat_id:
        return _response(400, {"error": "chat_id_required"})

    try:
        app.reconciler.handle_ping(str(chat_id))
    except Exception as e:
        log_error("ping_failed", e, chat_id=chat_id)
        return _response(500, {"error": "ping_failed"})
    return _response(200, {"status": "ok", "message": "Ping received!"})


def handle_check_request(app: Application) -> Dict[str, Any]:
    try:
        result = app.scheduler.trigger()
    except Exception as e:
        log_error("evaluation_pass_failed", e, trigger="on_demand")
        return _response(500, {"error": "evaluation_failed"})
    return _response(
        200,
        {
            "status": "ok",
            "checked": result.checked,
            "transitions": result.transitions,
            "failures": result.failures,
        },
    )


def handle_scheduled_event(app: Application) -> Dict[str, Any]:
    try:
        result = app.scheduler.run_pass(wait=False)
    except Exception as e:
        log_error("evaluation_pass_failed", e, trigger="schedule")
        return _response(500, {"error": "evaluation_failed"})
    if result is None:
        return _response(200, {"status": "skipped"})
    return _response(200, {"status": "ok", "checked": result.checked, "transitions": result.transitions})


def handle_telegram_update(app: Application, event: Dict[str, Any]) -> Dict[str, Any]:
    # Telegram retries on non-2xx, so failures are logged and acknowledged
    try:
        app.commands.handle_update(_request_body(event))
    except Exception as e:
        log_error("telegram_update_failed", e)
    return _response(200, {"ok": True})


def handle_test_event(app: Application) -> Dict[str, Any]:
    chat_id = app.config.telegram.admin_chat_id
    if not chat_id:
        return _response(400, {"success": False, "error": "admin_chat_id_not_configured"})

    message = (
        f"🧪 Тестове повідомлення з AWS Lambda\n\n🕐 {format_timestamp(time.time(), app.timezone)}"
        "\n\nМоніторинг електроживлення працює!"
    )
    message_id = app.dispatcher.send(chat_id, message)
    if message_id is None:
        return _response(500, {"success": False, "error": "send_failed"})
    log_event("test_notification_sent", chat_id=chat_id)
    return _response(200, {"success": True, "test": True, "message": "Test notification sent"})


def dispatch_event(app: Application, event: Dict[str, Any]) -> Dict[str, Any]:
    """Route one Lambda event to its handler."""
    if event.get("test"):
        return handle_test_event(app)

    if event.get("source") == "aws.events" or event.get("action") == "evaluate":
        return handle_scheduled_event(app)

    path = _request_path(event)
    if path is None:
        return _response(400, {"error": "unsupported_event"})
    if path.endswith("/ping"):
        return handle_ping_request(app, event)
    if path.endswith("/check-lights"):
        return handle_check_request(app)
    if path.endswith("/telegram"):
        return handle_telegram_update(app, event)
    return _response(404, {"error": "not_found", "path": path})


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda entry point.

    Startup failures (missing credentials/configuration) propagate and fail
    the invocation; everything else is converted into an HTTP-style response.
    """
    request_id = getattr(context, "aws_request_id", None)
    log_event("lambda_invoked", request_id=request_id)

    app = get_application()
    try:
        return dispatch_event(app, event)
    except Exception as e:
        log_error("unhandled_error", e, request_id=request_id)
        return _response(500, {"error": "internal_error"})
