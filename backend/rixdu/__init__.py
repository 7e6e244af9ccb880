import os
import subprocess
from pathlib import Path

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from rixdu.extensions import cors, db, migrate
from rixdu.models import User
from rixdu.segments.segment_categories import categories_bp
from rixdu.segments.segment_listings import listings_bp
from rixdu.segments.segment_notifications import notifications_bp
from rixdu.segments.segment_payments import payments_bp
from rixdu.segments.segment_profiles import profiles_bp
from rixdu.segments.segment_ratings import ratings_bp
from rixdu.segments.segment_reports import reports_bp
from rixdu.segments.segment_stores import stores_bp
from rixdu.segments.segment_stripe_webhooks import webhooks_bp
from rixdu.segments.segment_subscriptions import subscriptions_bp
from rixdu.services.errors import ServiceError
from rixdu.utils.jwt_utils import decode_token, get_bearer_token
from rixdu.utils.observability import init_sentry, install_request_observers

BACKEND_ROOT = Path(__file__).resolve().parents[1]
SERVICE_NAME = "rixdu-backend"

PRODUCTION_ENVS = ("prod", "production")
BOOTSTRAP_ENVS = ("dev", "development", "local", "test")

BLUEPRINTS = (
    stores_bp,
    categories_bp,
    listings_bp,
    profiles_bp,
    reports_bp,
    ratings_bp,
    notifications_bp,
    subscriptions_bp,
    payments_bp,
    webhooks_bp,
)


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    try:
        value = int((os.getenv(name) or "").strip() or default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _runtime_env() -> str:
    return _env_str("RIXDU_ENV", "dev").lower() or "dev"


def _alembic_head() -> str:
    migrations_dir = BACKEND_ROOT / "migrations"
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        heads = ScriptDirectory.from_config(cfg).get_heads()
    except Exception:
        return "unknown"
    return heads[0] if heads else "unknown"


def _git_sha() -> str:
    sha = _env_str("GIT_SHA") or _env_str("SOURCE_VERSION")
    if sha:
        return sha
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=str(BACKEND_ROOT), stderr=subprocess.DEVNULL)
    except Exception:
        return "unknown"
    return out.decode().strip() or "unknown"


def _database_url(env: str, instance_dir: str) -> str:
    url = _env_str("SQLALCHEMY_DATABASE_URI") or _env_str("DATABASE_URL")
    if not url:
        if env in PRODUCTION_ENVS:
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        url = "sqlite:///instance/rixdu.db"
    if url.startswith("sqlite:///instance/"):
        filename = url.rsplit("/", 1)[-1] or "rixdu.db"
        url = "sqlite:///" + os.path.join(instance_dir, filename).replace(os.sep, "/")
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def _engine_options(app: Flask, url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if url.startswith("sqlite://"):
        return options
    options["pool_size"] = _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200)
    options["max_overflow"] = _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500)
    options["pool_timeout"] = _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300)
    app.logger.info(
        "db_pool size=%s overflow=%s timeout=%s recycle=%s",
        options["pool_size"],
        options["max_overflow"],
        options["pool_timeout"],
        options["pool_recycle"],
    )
    return options


def _cors_origins(env: str) -> list:
    origins = [o.strip() for o in _env_str("CORS_ORIGINS").split(",") if o.strip()]
    if origins or env in PRODUCTION_ENVS:
        return origins
    return ["*"]


def _load_config(app: Flask, env: str) -> None:
    if env in PRODUCTION_ENVS:
        if len(_env_str("SECRET_KEY")) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    instance_dir = str(BACKEND_ROOT / "instance")
    os.makedirs(instance_dir, exist_ok=True)
    database_url = _database_url(env, instance_dir)

    app.config.update(
        SECRET_KEY=_env_str("SECRET_KEY", "dev-secret"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SQLALCHEMY_DATABASE_URI=database_url,
        SQLALCHEMY_ENGINE_OPTIONS=_engine_options(app, database_url),
        RIXDU_ENV=env,
        CLIENT_URL=_env_str("CLIENT_URL", "http://localhost:5173").rstrip("/"),
        INTEGRATIONS_MODE=_env_str("INTEGRATIONS_MODE", "sandbox").lower(),
        PAYMENTS_PROVIDER=_env_str("PAYMENTS_PROVIDER", "mock").lower(),
        PUSH_PROVIDER=_env_str("PUSH_PROVIDER", "mock").lower(),
        STORAGE_PROVIDER=_env_str("STORAGE_PROVIDER", "local").lower(),
        EMAIL_PROVIDER=_env_str("EMAIL_PROVIDER", "mock").lower(),
        SMS_PROVIDER=_env_str("SMS_PROVIDER", "mock").lower(),
        UPLOAD_DIR=_env_str("UPLOAD_DIR") or os.path.join(instance_dir, "uploads"),
        PENDING_PAYMENT_TTL_SECONDS=_env_int("PENDING_PAYMENT_TTL_SECONDS", 1800, minimum=60, maximum=86400),
        IMAGE_UPLOAD_DELAY_SECONDS=_env_int("IMAGE_UPLOAD_DELAY_SECONDS", 2, minimum=0, maximum=300),
    )


def _with_trace_id(payload: dict) -> dict:
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ServiceError)
    def _service_error(error: ServiceError):
        status = int(error.status)
        if status >= 500:
            app.logger.error("service_error path=%s code=%s message=%s", request.path, error.code, error.message)
        return jsonify(_with_trace_id(error.to_payload())), status

    @app.errorhandler(HTTPException)
    def _http_error(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        body = {"success": False, "error": error.name, "message": error.description or error.name, "status": status}
        return jsonify(_with_trace_id(body)), status

    @app.errorhandler(Exception)
    def _unhandled_error(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        db.session.rollback()
        body = {"success": False, "error": "InternalServerError", "message": "Internal server error"}
        if request.path.startswith("/api/"):
            body["status"] = 500
            body = _with_trace_id(body)
        return jsonify(body), 500


def _tag_sentry_user(user_id, role) -> None:
    try:
        import sentry_sdk

        sentry_sdk.set_user({"id": str(user_id)} if user_id else None)
        if user_id:
            sentry_sdk.set_tag("auth_role", role or "user")
    except Exception:
        pass


def _register_session_hooks(app: Flask) -> None:
    @app.before_request
    def _reset_db_session():
        db.session.rollback()

    @app.before_request
    def _resolve_auth_user():
        g.auth_user_id = None
        g.auth_role = None
        claims = decode_token(get_bearer_token(request.headers.get("Authorization", "")) or "")
        try:
            uid = int((claims or {}).get("sub"))
        except (TypeError, ValueError):
            _tag_sentry_user(None, None)
            return
        g.auth_user_id = uid
        try:
            user = db.session.get(User, uid)
        except Exception:
            db.session.rollback()
            user = None
        if user is not None:
            g.auth_role = (user.role or "user").strip().lower()
        _tag_sentry_user(uid, g.auth_role)

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()


def _check_database():
    try:
        with db.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        msg = str(e)
        return "fail", (msg[:300] + "...") if len(msg) > 300 else msg
    return "ok", None


def _integration_health() -> dict:
    from rixdu.integrations.common import integration_settings
    from rixdu.integrations.messaging.factory import messaging_health
    from rixdu.integrations.payments.factory import payment_health
    from rixdu.integrations.push.factory import push_health
    from rixdu.integrations.storage.factory import storage_health

    settings = integration_settings()
    return {
        "messaging": messaging_health(settings),
        "payments": payment_health(settings),
        "push": push_health(settings),
        "storage": storage_health(settings),
    }


def _register_meta_routes(app: Flask, env: str) -> None:
    @app.get("/")
    def root():
        return jsonify({"success": True, "service": SERVICE_NAME, "env": env})

    @app.get("/api/health")
    def health():
        db_state, db_error = _check_database()
        body = {
            "success": True,
            "service": SERVICE_NAME,
            "env": env,
            "db": db_state,
            "git_sha": _git_sha(),
            "alembic_head": _alembic_head(),
            "integrations": _integration_health(),
        }
        if db_error:
            body["db_error"] = db_error
        return jsonify(body)

    @app.get("/api/version")
    def version():
        return jsonify({"success": True, "alembic_head": _alembic_head(), "git_sha": _git_sha()})


def _register_cli(app: Flask) -> None:
    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        """Create or promote the admin account named by ADMIN_EMAIL."""
        if _runtime_env() not in BOOTSTRAP_ENVS and _env_str("ALLOW_ADMIN_BOOTSTRAP") != "1":
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or RIXDU_ENV=dev.")
        email = _env_str("ADMIN_EMAIL").lower()
        password = _env_str("ADMIN_PASSWORD")
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(name=email.split("@")[0], email=email, is_verified=True)
            db.session.add(user)
        user.role = "admin"
        user.set_password(password)
        try:
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            raise click.ClickException(f"Failed to bootstrap admin: {e}")
        click.echo(f"admin_bootstrap_ok {user.email}")

    @app.cli.command("backfill-store-kinds")
    @click.option("--dry-run", is_flag=True, default=False, help="Report changes without writing them")
    @click.option("--all-stores", is_flag=True, default=False, help="Reclassify stores that already have a kind")
    def backfill_store_kinds_command(dry_run: bool, all_stores: bool):
        from rixdu.services.store_kinds import backfill_store_kinds

        changes = backfill_store_kinds(dry_run=dry_run, only_general=not all_stores)
        for slug, old_kind, new_kind in changes:
            click.echo(f"{slug}: {old_kind} -> {new_kind}")
        click.echo(f"backfill_store_kinds_ok changed={len(changes)} dry_run={str(dry_run).lower()}")

    @app.cli.command("expire-subscriptions")
    def expire_subscriptions_command():
        from rixdu.services.subscription_service import expire_due

        click.echo(f"expire_subscriptions_ok expired={expire_due()}")

    @app.cli.command("purge-pending-payments")
    def purge_pending_payments_command():
        from rixdu.services.payment_drafts import purge_expired

        click.echo(f"purge_pending_payments_ok purged={purge_expired()}")


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = _runtime_env()
    _load_config(app, env)

    cors.init_app(app, resources={r"/api/*": {"origins": _cors_origins(env)}})
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    _register_error_handlers(app)
    _register_session_hooks(app)
    for bp in BLUEPRINTS:
        app.register_blueprint(bp)
    _register_meta_routes(app, env)
    _register_cli(app)

    from rixdu.celery_app import create_celery_app

    app.extensions["celery"] = create_celery_app(app)
    return app
