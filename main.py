"""
LazyTravel – main application entry point

* Flask app exposing the trip planning core over JSON routes under `/api`.
* Views are `async def`; Flask runs them through asgiref, so every request
  gets its own event loop and background recalculations are awaited before
  the response is sent.
* Trips live in an in-memory store unless another persistence adapter is
  passed to `create_app`.
"""

import os
import logging

from flask import Flask
from flask_cors import CORS
from dotenv import load_dotenv

from lazytravel.api.config import get_port, validate_config
from lazytravel.api.services.persistence import InMemoryTripStore, PersistenceAdapter
from lazytravel.routes.trips import create_trip_blueprint

# --------------------------------------------------------------------------- #
# Environment & logging
# --------------------------------------------------------------------------- #
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Flask initialisation
# --------------------------------------------------------------------------- #
def create_app(store: PersistenceAdapter | None = None) -> Flask:
    """Build the Flask app around ``store``."""
    validate_config()

    app = Flask(__name__)
    app.json.sort_keys = False

    # CORS for local dev / cross‑origin front‑end requests
    CORS(app, origins="*")

    store = store or InMemoryTripStore()
    app.extensions["trip_store"] = store
    app.register_blueprint(create_trip_blueprint(store))

    logger.info("LazyTravel app initialised (store=%s)", type(store).__name__)
    return app


app = create_app()

# --------------------------------------------------------------------------- #
# Local development runner ( `python main.py` )
# --------------------------------------------------------------------------- #
if __name__ == "__main__":
    port = get_port()
    logger.info("Starting travel app on http://localhost:%d", port)
    app.run(host="0.0.0.0", port=port, debug=False)

__all__ = ["app", "create_app"]
