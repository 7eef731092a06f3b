import os
import subprocess
import click
from pathlib import Path
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from uniket.errors import ApiError
from uniket.extensions import db, migrate, cors
from uniket.models import User
from uniket.segments.segment_auth import auth_bp
from uniket.segments.segment_orders_api import orders_bp
from uniket.segments.segment_tickets import tickets_bp
from uniket.segments.segment_notifications import notifications_bp
from uniket.segments.segment_wallets import wallets_bp
from uniket.segments.segment_bids import bids_bp
from uniket.segments.segment_pickup_points import pickup_bp
from uniket.segments.segment_products import products_bp
from uniket.segments.segment_admin import admin_bp
from uniket.utils.jwt_utils import decode_token, get_bearer_token
from uniket.utils.notify import DatabaseNotificationSink, archive_old_notifications
from uniket.utils.observability import init_sentry, install_request_observers, tag_sentry_user
from uniket.utils.realtime import RealtimePublisher
from uniket.utils.rate_limit import (
    build_rate_limit_subject,
    check_limit,
    rate_limit_enabled,
    rate_limited_response,
    skip_in_tests,
)


def _resolve_git_sha() -> str:
    val = (os.getenv("GIT_SHA") or "").strip()
    if val:
        return val
    try:
        repo_root = Path(__file__).resolve().parents[1]
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except Exception:
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except Exception:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def _error_payload(error: str, message: str, status: int) -> dict:
    payload = {
        "ok": False,
        "error": error,
        "message": message,
        "status": int(status),
    }
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("UNIKET_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    # Basic config
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["ADMIN_RECIPIENT_ID"] = _env_int("ADMIN_RECIPIENT_ID", 1, minimum=1, maximum=2**31 - 1)
    app.config["STRICT_TICKET_REUSE_CHECK"] = _env_bool("STRICT_TICKET_REUSE_CHECK", False)
    app.config["EXPOSE_ERROR_DETAILS"] = _env_bool("EXPOSE_ERROR_DETAILS", False)

    # Ensure instance dir exists for SQLite paths
    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    # Database config
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        if env in ("prod", "production"):
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        database_url = "sqlite:///instance/uniket.db"
    if database_url.startswith("sqlite://") and database_url != "sqlite:///:memory:":
        canonical_path = os.path.join(instance_dir, "uniket.db")
        database_url = f"sqlite:///{canonical_path.replace(os.sep, '/')}"
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
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
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
            engine_options["pool_recycle"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    # Side-effect collaborators; tests swap these for fakes.
    app.extensions["notification_sink"] = DatabaseNotificationSink()
    app.extensions["realtime_publisher"] = RealtimePublisher.from_env()

    @app.errorhandler(ApiError)
    def _api_error(error: ApiError):
        if error.status_code >= 500:
            app.logger.error("api_error path=%s error=%s message=%s", request.path, error.code, error.message)
        payload = error.to_dict(include_details=bool(app.config.get("EXPOSE_ERROR_DETAILS")))
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.status_code)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        return jsonify(_error_payload(error.name, error.description or error.name, status)), status

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        try:
            db.session.rollback()
        except Exception:
            pass
        return jsonify(_error_payload("InternalServerError", "Internal server error", 500)), 500

    # Register API routes
    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(tickets_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(bids_bp)
    app.register_blueprint(pickup_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(admin_bp)

    # Health check
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
            "service": "uniket-backend",
            "env": env,
            "db": db_state,
            "git_sha": _resolve_git_sha(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({
            "ok": True,
            "service": "uniket-backend",
            "env": env,
        })

    @app.before_request
    def _capture_auth_context():
        # Lenient lookup for logging and rate limiting; routes authenticate
        # strictly through uniket.utils.auth.
        g.auth_user_id = None
        g.auth_role = None
        tag_sentry_user(None)
        token = get_bearer_token(request.headers.get("Authorization", ""))
        if not token:
            return
        payload = decode_token(token)
        if not payload:
            return
        try:
            uid = int(payload.get("sub"))
        except Exception:
            return
        g.auth_user_id = uid
        g.auth_role = (payload.get("role") or "customer").strip().lower()

    @app.before_request
    def _global_rate_limit_guard():
        if skip_in_tests(app):
            return None
        if not rate_limit_enabled(True):
            return None
        method = (request.method or "GET").strip().upper()
        if method == "OPTIONS":
            return None
        path = (request.path or "").strip()
        if not path.startswith("/api/"):
            return None

        if path.startswith("/api/auth"):
            subject = build_rate_limit_subject(scope="ip", user_id=None, request_obj=request)
            ok_minute, retry_minute = check_limit(f"tier:auth:minute:{subject}", limit=10, window_seconds=60)
            if not ok_minute:
                return rate_limited_response(retry_minute)
            ok_hour, retry_hour = check_limit(f"tier:auth:hour:{subject}", limit=30, window_seconds=3600)
            if not ok_hour:
                return rate_limited_response(retry_hour)
            return None

        user_id = getattr(g, "auth_user_id", None)
        subject = build_rate_limit_subject(
            scope="user" if user_id is not None else "ip",
            user_id=int(user_id) if user_id is not None else None,
            request_obj=request,
        )
        if method == "GET":
            limit, tier = 120, "browse"
        else:
            limit, tier = 60, "write"
        ok, retry_after = check_limit(f"tier:{tier}:{method}:{path}:{subject}", limit=limit, window_seconds=60)
        if not ok:
            return rate_limited_response(retry_after)
        return None

    @app.before_request
    def _reset_db_session():
        try:
            db.session.rollback()
        except Exception:
            pass

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        env_name = (os.getenv("UNIKET_ENV") or os.getenv("FLASK_ENV") or "dev").strip().lower()
        allow = (os.getenv("ALLOW_ADMIN_BOOTSTRAP") or "").strip() == "1"
        if env_name not in ("dev", "development", "local", "test") and not allow:
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or UNIKET_ENV=dev.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        db.create_all()
        u = User.query.filter_by(email=email).first()
        try:
            if u:
                u.set_password(password)
                u.role = "admin"
            else:
                u = User(name=email.split("@")[0], email=email, role="admin")
                u.set_password(password)
                db.session.add(u)
            db.session.commit()
            click.echo(f"admin_bootstrap_ok {u.email} id={u.id}")
        except Exception:
            db.session.rollback()
            raise click.ClickException("Failed to bootstrap admin.")

    @app.cli.command("archive-notifications")
    @click.option("--keep", default=100, show_default=True, help="Notifications to keep per user")
    def archive_notifications(keep: int):
        removed = 0
        for (user_id,) in db.session.query(User.id).all():
            removed += archive_old_notifications(int(user_id), keep=keep)
        click.echo(f"notifications_archived removed={removed}")

    return app
