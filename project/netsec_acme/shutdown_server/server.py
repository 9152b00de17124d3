import logging
import threading

from flask import Flask

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Set once /shutdown was requested, releasing the main thread
shutdown_requested = threading.Event()


@app.route("/shutdown", methods=["GET"])
def shutdown() -> str:
    logger.info("Shutdown requested")
    shutdown_requested.set()
    return "Shutting down"
