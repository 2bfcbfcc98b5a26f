import logging

from flask import Flask, jsonify, make_response, request
from flask_cors import CORS
from apscheduler.schedulers.background import BackgroundScheduler
from werkzeug.exceptions import HTTPException

from src.config import config
from src.routes.donation_routes import donation_bp
from src.services.donation_lifecycle import DonationManager
from src.services.donation_store import InMemoryDonationStore
from src.services.expiry_sweeper import ExpirySweeper
from src.services.supabase_store import SupabaseDonationStore
from src.utils.clock import SystemClock
from src.utils.errors import DonationError, StorageError
from src.utils.mail_instance import mail

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(message)s"
)

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Requested-With",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS,PUT,DELETE,PATCH",
}


def build_store(kind: str):
    if kind == "memory":
        return InMemoryDonationStore()
    if kind == "supabase":
        return SupabaseDonationStore(table=config.DONATIONS_TABLE)
    raise ValueError(f"Unknown DONATION_STORE: {kind!r}")


def create_app(config_overrides=None, store=None, clock=None):
    """Create and configure the Flask app.

    `store` and `clock` replace the configured collaborators (tests pass an
    InMemoryDonationStore and a FixedClock).
    """
    app = Flask(__name__)
    app.config.update(config.flask_settings())
    app.config["ALLOWED_ORIGINS"] = list(config.ALLOWED_ORIGINS)
    app.config.update(config_overrides or {})

    # ==========================================
    # 🔹 Core collaborators
    # ==========================================
    if store is None:
        store = build_store(app.config["DONATION_STORE"])
    if clock is None:
        clock = SystemClock()
    app.extensions["foodlink"] = {
        "store": store,
        "clock": clock,
        "manager": DonationManager(store, clock),
        "sweeper": ExpirySweeper(store, clock, app.config["EXPIRY_SWEEP_MINUTES"]),
    }

    mail.init_app(app)

    # ==========================================
    # 🔹 CORS
    # ==========================================
    allowed_origins = app.config["ALLOWED_ORIGINS"]
    CORS(
        app,
        resources={r"/api/*": {"origins": allowed_origins}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        methods=["GET", "POST", "OPTIONS", "PUT", "DELETE", "PATCH"],
    )

    def with_cors(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        for header, value in CORS_HEADERS.items():
            response.headers[header] = value
        return response

    @app.before_request
    def handle_preflight():
        if request.method == "OPTIONS":
            response = make_response()
            response.status_code = 200
            return with_cors(response)
        return None

    app.after_request(with_cors)

    # ==========================================
    # 🔹 Error handlers (keep CORS intact)
    # ==========================================
    @app.errorhandler(DonationError)
    def handle_donation_error(e):
        if isinstance(e, StorageError):
            logger.error(f"Storage failure on {request.path}: {e.message}")
            body = {"error": "Temporary database connectivity issue. Please retry."}
        else:
            body = {"error": e.message}
        response = jsonify(body)
        response.status_code = e.status_code
        return with_cors(response)

    @app.errorhandler(404)
    def handle_not_found(e):
        return with_cors(make_response(jsonify({"error": "Not found"}), 404))

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return with_cors(make_response(jsonify({"error": "Method not allowed"}), 405))

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return with_cors(make_response(jsonify({"error": e.description}), e.code))
        logger.exception("Unhandled error")
        response = jsonify({"error": "An unexpected server error occurred."})
        response.status_code = 500
        return with_cors(response)

    # ==========================================
    # 🔹 Blueprints
    # ==========================================
    app.register_blueprint(donation_bp, url_prefix="/api")

    @app.route("/")
    def home():
        return jsonify({"message": "🥦 FoodLink backend is running!"})

    @app.route("/health")
    def health():
        return {"status": "ok", "store": store.kind}

    return app


# ==========================================
# 🔹 Scheduler
# ==========================================
def start_scheduler(app):
    scheduler = BackgroundScheduler(timezone="UTC")
    sweeper = app.extensions["foodlink"]["sweeper"]
    sweeper.schedule(scheduler)
    scheduler.start()
    logger.info(f"🕒 Expiry sweeper started (every {sweeper.interval_minutes} min).")
    return scheduler


if __name__ == "__main__":
    app = create_app()
    if app.config["ENABLE_SCHEDULER"]:
        start_scheduler(app)
    app.run(host="0.0.0.0", port=config.PORT, debug=config.DEBUG, use_reloader=False)
