# warranty_admin/main.py
import logging
import time

from flask import Flask, g, jsonify, request

from warranty_admin.config import Config
from warranty_admin.database import close_db, create_tables
from warranty_admin.blueprints.warranties import warranties_bp
from warranty_admin.observability import (
    check_database_health,
    configure_logging,
    ensure_request_id,
    get_metrics_snapshot,
    log_request_completed,
    increment_counter,
    observe_latency,
)

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
app.register_blueprint(warranties_bp)
app.teardown_appcontext(close_db)

logger = logging.getLogger(__name__)


def init_database():
    create_tables()
    logger.info("Database tables initialized successfully")


init_database()


@app.before_request
def before_request_logging():
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={"method": request.method, "endpoint": request.endpoint or request.path},
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, "request_started_at", None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
        log_request_completed(response.status_code, duration_ms)
    response.headers[Config.REQUEST_ID_HEADER] = getattr(g, "request_id", "")
    return response


@app.errorhandler(500)
def handle_internal_error(error):
    logger.error(
        "Unhandled error while serving %s",
        request.path,
        exc_info=getattr(error, "original_exception", None),
    )
    return jsonify({"status": "error", "kind": "storage", "message": "Something went wrong on our side"}), 500


@app.route("/health", methods=["GET"])
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "UP" else 503
    return jsonify({"status": database["status"], "database": database, "app": Config.APP_NAME}), status_code


@app.route("/metrics", methods=["GET"])
def metrics():
    return jsonify(get_metrics_snapshot())
