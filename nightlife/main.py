# nightlife/main.py
import logging
import time

from flask import Flask, abort, g, jsonify, request, session
from sqlalchemy.exc import SQLAlchemyError

from nightlife.config import Config
from nightlife.database import close_db, create_tables, get_db
from nightlife.models import User
from nightlife.blueprints.checkout import checkout_bp
from nightlife.blueprints.pricing import pricing_bp
from nightlife.blueprints.redemption import redemption_bp
from nightlife.blueprints.sse import sse_bp
from nightlife.blueprints.webhooks import webhooks_bp
from nightlife.extensions import current_user, get_registry, init_extensions
from nightlife.observability import (
    check_database_health,
    check_qr_key,
    configure_logging,
    ensure_request_id,
    get_metrics_snapshot,
    increment_counter,
    observe_latency,
)

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
init_extensions(app)

for blueprint in (redemption_bp, webhooks_bp, sse_bp, checkout_bp, pricing_bp):
    app.register_blueprint(blueprint)

logger = logging.getLogger(__name__)


def init_database():
    try:
        create_tables()
    except SQLAlchemyError:
        # The app still boots so /health can report the database as down
        logger.exception("Could not create database tables")
    else:
        logger.info("Database tables ready")


init_database()


def _route_labels(**extra):
    labels = {"method": request.method, "endpoint": request.endpoint or request.path}
    labels.update(extra)
    return labels


@app.before_request
def load_request_state():
    g.request_id = ensure_request_id()
    g.request_started_at = time.perf_counter()
    user_id = session.get("user_id")
    g.current_user = get_db().get(User, user_id) if user_id else None
    increment_counter("http_requests_total", labels=_route_labels())


@app.after_request
def record_response(response):
    labels = _route_labels(status=str(response.status_code))
    elapsed_ms = (time.perf_counter() - g.get("request_started_at", time.perf_counter())) * 1000
    observe_latency("http_request_latency_ms", elapsed_ms, labels=labels)
    response.headers[Config.REQUEST_ID_HEADER] = g.get("request_id", "")

    if response.status_code >= 500:
        increment_counter("http_errors_total", labels=labels)
        logger.error("Request failed with status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    return response


@app.teardown_appcontext
def release_db_session(exception):
    close_db(exception)


@app.route("/health", methods=["GET"])
def health():
    components = {"database": check_database_health(), "qr_codec": check_qr_key()}
    healthy = all(component.get("status") == "UP" for component in components.values())
    body = {
        "status": "UP" if healthy else "DEGRADED",
        "components": components,
        "sse_connections": get_registry().connection_count(),
    }
    return jsonify(body), 200 if healthy else 503


@app.route("/admin/metrics", methods=["GET"])
def admin_metrics():
    user = current_user()
    if user is None or not user.is_admin:
        abort(403)
    return jsonify(get_metrics_snapshot())
