"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from vittasami.config import TOKEN_EXPIRY_DAYS, is_development
from vittasami.database import init_engine, init_schema
from vittasami.llm import init_llm
from vittasami.api.routes import register_routes


def create_app(engine=None, llm=None):
    """Build and return a fully configured Flask application.

    Passing *engine* skips environment-driven initialisation; *llm* may then
    be None, which disables AI suggestions.
    """
    app = Flask(__name__)
    CORS(app, supports_credentials=True)

    # ── Initialise shared resources ──────────────────────────────────
    if engine is None:
        try:
            print("[init] Initializing database connection...")
            engine = init_engine()

            print("[init] Ensuring schema...")
            init_schema(engine)

            print("[init] Initializing LLM...")
            llm = init_llm()

            print("[init] ✓ API server ready")
        except Exception as e:
            print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
            traceback.print_exc()
            sys.exit(1)

    app.config["ENGINE"] = engine
    app.config["LLM"] = llm

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine, llm)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("VittaSami – Clinic Management REST API")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = is_development()

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] CORS enabled: True")
    print(f"[server] Token expiry: {TOKEN_EXPIRY_DAYS} days")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - GET  http://{host}:{port}/api/tenants")
    print(f"  - GET  http://{host}:{port}/api/patients")
    print(f"  - POST http://{host}:{port}/api/appointments")
    print(f"  - GET  http://{host}:{port}/api/invoices")
    print(f"  - POST http://{host}:{port}/api/payments/webhook")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
