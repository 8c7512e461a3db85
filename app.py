import logging
import os

from demoqueue import app, socketio

logging.basicConfig(level=logging.INFO)


if __name__ == "__main__":
    debug = os.getenv("FLASK_DEBUG", "0") == "1"
    socketio.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=debug)
