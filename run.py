"""Local development server.

Usage:
    python run.py

Reads settings from .env, creates missing tables and serves the webhook
endpoint on port 5001. Production deployments run create_app() under a
WSGI server and manage the schema with `flask db upgrade`.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before the config classes read os.environ

from payrelay import create_app  # noqa: E402
from payrelay.extensions import db  # noqa: E402

app = create_app()

if __name__ == "__main__":
    with app.app_context():
        db.create_all()
    # Threaded so concurrent PayPal deliveries don't queue behind each other
    app.run(debug=True, host="0.0.0.0", port=5001, threaded=True)
