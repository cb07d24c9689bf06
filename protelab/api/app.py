"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from protelab.config import TOKEN_EXPIRY_HOURS
from protelab.database import create_schema, init_engine
from protelab.logging_config import configure_logging
from protelab.realtime import RealtimeHub
from protelab.storage import get_storage
from protelab.api.routes import register_routes


def create_app(engine=None, hub=None, storage=None):
    """
    Build and return a fully configured Flask application.

    Tests pass their own engine, hub and storage; the server builds them
    from the environment.
    """
    app = Flask(__name__)
    CORS(app)
    configure_logging()

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if engine is None:
            print("[init] Initializing database connection...")
            engine = init_engine()
            print("[init] Ensuring schema...")
            create_schema(engine)
        if storage is None:
            print("[init] Initializing object storage...")
            storage = get_storage()
        if hub is None:
            hub = RealtimeHub()
        print("[init] ✓ API server ready")
    except Exception as e:
        print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine, hub, storage)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("ProteLab – Laboratory Orders API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print("[server] CORS enabled: True")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - GET  http://{host}:{port}/api/pedidos")
    print(f"  - POST http://{host}:{port}/api/pedidos/<id>/avancar")
    print(f"  - GET  http://{host}:{port}/api/pedidos/<id>/timeline")
    print(f"  - GET  http://{host}:{port}/api/dashboard")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
