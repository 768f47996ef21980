import os
from pathlib import Path

from flask import Flask, current_app

from config.connection import DEFAULT_DRIVER

from .context import DashboardContext, pyodbc_connect
from .users import UserStore


def create_app():
    app = Flask(__name__)
    app.secret_key = os.environ["SECRET_KEY"]

    data_dir = Path(os.environ.get("DASHBOARD_DATA_DIR") or app.instance_path)
    data_dir.mkdir(parents=True, exist_ok=True)
    app.config["DATA_DIR"] = data_dir
    app.config["ODBC_DRIVER"] = os.environ.get("ODBC_DRIVER") or DEFAULT_DRIVER

    app.config["DASHBOARD_CONTEXT"] = DashboardContext(
        data_dir / "config.json",
        connect=pyodbc_connect,
        driver=app.config["ODBC_DRIVER"],
    )
    app.config["USER_STORE"] = UserStore(data_dir / "users.db")

    from .auth.routes import auth_bp
    from .main.routes import main_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)

    return app


def get_context() -> DashboardContext:
    return current_app.config["DASHBOARD_CONTEXT"]


def get_user_store() -> UserStore:
    return current_app.config["USER_STORE"]
