"""Local development server.

Usage:
    python run.py          # serves on $PORT (default 3000)

Production runs the app through a WSGI server with FLASK_ENV=production.
"""

import os

from dotenv import load_dotenv

load_dotenv()  # .env must be loaded before the config classes read os.environ

from socialmarket import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=int(os.environ.get("PORT", 3000)))
