import json
import os

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from jobflow.extensions import db, migrate, cors
from jobflow.integrations.side_effects.factory import build_dispatcher, side_effects_mode
from jobflow.segments.segment_orders_api import orders_bp
from jobflow.utils.observability import init_sentry, install_request_observers
from jobflow.utils.pricing import load_pricing_config


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("JOBFLOW_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["JOBFLOW_ENV"] = env

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{os.path.join(instance_dir, 'jobflow.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # Lifecycle settings
    app.config["PRICING_CONFIG"] = load_pricing_config()
    app.config["TRANSITION_MAX_ATTEMPTS"] = _env_int("TRANSITION_MAX_ATTEMPTS", 3, minimum=1, maximum=20)
    app.config["TRANSITION_RETRY_BACKOFF_MS"] = _env_int("TRANSITION_RETRY_BACKOFF_MS", 25, minimum=0, maximum=5000)
    app.config["SIDE_EFFECTS_MODE"] = side_effects_mode()
    app.config["SIDE_EFFECTS_ASYNC"] = _env_bool("SIDE_EFFECTS_ASYNC", False)
    app.config["SIDE_EFFECTS_RETRY_FAILED"] = _env_bool("SIDE_EFFECTS_RETRY_FAILED", True)
    app.config["SIDE_EFFECT_DISPATCHER"] = build_dispatcher(app.config["SIDE_EFFECTS_MODE"])
    app.config["RECONCILIATION_TOLERANCE_MINOR"] = _env_int("RECONCILIATION_TOLERANCE_MINOR", 0, minimum=0)
    app.logger.info(
        "lifecycle_config pricing=%s side_effects=%s async=%s max_attempts=%s",
        json.dumps(app.config["PRICING_CONFIG"].to_dict()),
        app.config["SIDE_EFFECTS_MODE"],
        app.config["SIDE_EFFECTS_ASYNC"],
        app.config["TRANSITION_MAX_ATTEMPTS"],
    )

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        payload = {
            "ok": False,
            "error": {"code": error.name.upper().replace(" ", "_"), "message": error.description or error.name},
            "status": int(error.code or 500),
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        db.session.rollback()
        payload = {
            "ok": False,
            "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
            "status": 500,
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), 500

    app.register_blueprint(orders_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": True,
            "service": "jobflow",
            "env": env,
            "db": db_state,
            "side_effects": app.config["SIDE_EFFECTS_MODE"],
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.teardown_appcontext
    def _teardown_session(exc):
        if exc is not None:
            db.session.rollback()

    @app.cli.command("reconcile-balances")
    @click.option("--persist", is_flag=True, help="Store the report in reconciliation_reports.")
    @click.option("--tolerance-minor", default=0, type=int, help="Allowed drift in minor units.")
    def reconcile_balances(persist: bool, tolerance_minor: int):
        from jobflow.services.reconciliation_service import persist_report, recompute_balances

        summary = recompute_balances(tolerance_minor=tolerance_minor)
        if persist:
            summary["report_id"] = int(persist_report(summary).id)
        click.echo(json.dumps(summary, indent=2))
        if int(summary.get("drift_count") or 0):
            raise click.exceptions.Exit(2)

    return app
