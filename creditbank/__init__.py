# creditbank/__init__.py
import logging
import os

from dotenv import load_dotenv
from flask import Flask
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

from .errors import ConfigurationError

# ==========================================================
#  Initialize extensions
# ==========================================================
db = SQLAlchemy()
login_manager = LoginManager()
csrf = CSRFProtect()
migrate = Migrate()

DEFAULTS = {
    "SECRET_KEY": "dev-secret-key",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "JWT_ALGORITHM": "HS256",
    "STUDENT_TOKEN_TTL_DAYS": 7,
    "ADMIN_TOKEN_TTL_HOURS": 24,
    "PROGRAM_STRUCTURE_CACHE_TTL": 300,
    "MAX_FAILED_LOGINS": 5,
    "ACCOUNT_LOCK_MINUTES": 30,
    "AUTH_COOKIE_NAME": "auth_token",
    "AUTH_COOKIE_SECURE": False,
    "ADMIN_BOOTSTRAP_PASSCODE": None,
    "LOG_LEVEL": "INFO",
    # CSRF is only enforced for cookie-authenticated writes, see security.py
    "WTF_CSRF_CHECK_DEFAULT": False,
}

REQUIRED_KEYS = ("JWT_SECRET_KEY", "SQLALCHEMY_DATABASE_URI")


def _config_from_env():
    """Read settings from the environment, failing fast on missing credentials."""
    config = {}
    missing = []

    config["SECRET_KEY"] = os.getenv("SECRET_KEY", DEFAULTS["SECRET_KEY"])

    jwt_secret = os.getenv("JWT_SECRET_KEY")
    if not jwt_secret:
        missing.append("JWT_SECRET_KEY")
    config["JWT_SECRET_KEY"] = jwt_secret

    database_url = os.getenv("DATABASE_URL")
    if database_url:
        config["SQLALCHEMY_DATABASE_URI"] = database_url
    else:
        mysql_host = os.getenv("MYSQL_HOST", "127.0.0.1")
        mysql_user = os.getenv("MYSQL_USER")
        mysql_password = os.getenv("MYSQL_PASSWORD", "")
        mysql_db = os.getenv("MYSQL_DB")
        if not mysql_user:
            missing.append("MYSQL_USER")
        if not mysql_db:
            missing.append("MYSQL_DB")
        if mysql_user and mysql_db:
            config["SQLALCHEMY_DATABASE_URI"] = (
                f"mysql+pymysql://{mysql_user}:{mysql_password}"
                f"@{mysql_host}/{mysql_db}?charset=utf8mb4"
            )

    if missing:
        raise ConfigurationError(
            "Missing required configuration: " + ", ".join(missing)
        )

    config["ADMIN_BOOTSTRAP_PASSCODE"] = os.getenv("ADMIN_BOOTSTRAP_PASSCODE")
    config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", DEFAULTS["LOG_LEVEL"])
    config["AUTH_COOKIE_SECURE"] = os.getenv("AUTH_COOKIE_SECURE", "").lower() in ("1", "true", "yes")
    ttl = os.getenv("PROGRAM_STRUCTURE_CACHE_TTL")
    if ttl:
        try:
            config["PROGRAM_STRUCTURE_CACHE_TTL"] = int(ttl)
        except ValueError as err:
            raise ConfigurationError(
                f"PROGRAM_STRUCTURE_CACHE_TTL must be a whole number of seconds, got {ttl!r}"
            ) from err
    return config


# ==========================================================
#  Application Factory
# ==========================================================
def create_app(test_config=None):
    app = Flask(__name__)

    # --------------------------
    # Config
    # --------------------------
    app.config.from_mapping(DEFAULTS)
    if test_config is None:
        load_dotenv()
        app.config.update(_config_from_env())
    else:
        app.config.update(test_config)

    missing = [key for key in REQUIRED_KEYS if not app.config.get(key)]
    if missing:
        raise ConfigurationError("Missing required configuration: " + ", ".join(missing))

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # --------------------------
    # Initialize extensions
    # --------------------------
    db.init_app(app)
    csrf.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from .program_structure import ProgramStructureStore

    app.extensions["program_structure"] = ProgramStructureStore(
        ttl=app.config["PROGRAM_STRUCTURE_CACHE_TTL"]
    )

    # --------------------------
    # Login manager setup
    # --------------------------
    from .security import load_identity, reject_anonymous

    login_manager.session_protection = None
    login_manager.request_loader(load_identity)
    login_manager.unauthorized_handler(reject_anonymous)

    # --------------------------
    # Create database tables
    # --------------------------
    from . import models

    with app.app_context():
        db.create_all()

    # --------------------------
    # Register Blueprints
    # --------------------------
    from .admin_api import admin_api
    from .admin_auth import admin_auth
    from .auth import auth
    from .courses import courses
    from .errors import register_error_handlers
    from .student_api import student_api

    app.register_blueprint(auth, url_prefix="/auth")
    app.register_blueprint(student_api)
    app.register_blueprint(courses)
    app.register_blueprint(admin_auth, url_prefix="/admin/auth")
    app.register_blueprint(admin_api, url_prefix="/admin")
    register_error_handlers(app)

    app.logger.debug("Blueprints registered: %s", ", ".join(app.blueprints))

    # --------------------------
    # CLI
    # --------------------------
    from .seed import seed_command

    app.cli.add_command(seed_command)

    @app.shell_context_processor
    def make_shell_context():
        return {
            "db": db,
            "Student": models.Student,
            "Course": models.Course,
            "CompletedCourse": models.CompletedCourse,
            "Admin": models.Admin,
        }

    return app
