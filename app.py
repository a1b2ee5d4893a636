import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from models import db
from models.pharmacy import Pharmacy
from routes import health_bp, auth_bp, pharmacies_bp, appointments_bp
from scheduling.booking import storage_error
from scheduling.errors import SchedulingError
from scheduling.hours import format_slots, parse_business_hours
from utils.auth_context import load_current_user


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    _configure_logging(app)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(pharmacies_bp)
    app.register_blueprint(appointments_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(SchedulingError)
    def _scheduling_error(exc):
        app.logger.info("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(SQLAlchemyError)
    def _storage_error(exc):
        db.session.rollback()
        app.logger.exception("Unhandled storage failure")
        err = storage_error(exc)
        return jsonify(err.to_dict()), err.http_status

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app


def _configure_logging(app):
    level = app.config.get("LOG_LEVEL", "INFO")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("scheduling").setLevel(level)
    app.logger.setLevel(level)

#-------------------------

def register_cli(app):
    @app.cli.command("create-db")
    def create_db():
        """Create all tables (development shortcut for `flask db upgrade`)."""
        db.create_all()
        print("Database tables created")

    @app.cli.command("add-pharmacy")
    @click.argument("name")
    @click.argument("business_hours")
    def add_pharmacy(name, business_hours):
        """Register a pharmacy, e.g. add-pharmacy "Centro" "09:00-13:00 y 14:00-18:00"."""
        slots = parse_business_hours(business_hours)
        if not slots:
            print("Warning: business hours produce no bookable slots")

        pharmacy = Pharmacy(name=name.strip(), business_hours=business_hours.strip())
        db.session.add(pharmacy)
        db.session.commit()
        print(f"Pharmacy {pharmacy.id} created with {len(slots)} daily slots")

    @app.cli.command("show-slots")
    @click.argument("pharmacy_id", type=int)
    def show_slots(pharmacy_id):
        """Print the daily slot template of a pharmacy."""
        pharmacy = db.session.get(Pharmacy, pharmacy_id)
        if not pharmacy:
            print("Pharmacy not found")
            return
        print(", ".join(format_slots(parse_business_hours(pharmacy.business_hours))) or "(no slots)")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
