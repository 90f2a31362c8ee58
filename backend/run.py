"""
Off-Ramp Backend — Uvicorn Launcher & Partner Provisioning
Run this file to start the development server or issue partner credentials.

Usage:
    python run.py
    python run.py serve --port 8000 --reload
    python run.py create-partner --name "Acme Pay" --email ops@acme.example \
        --webhook-url https://acme.example/hooks/offramp
"""
import argparse
import sys

import uvicorn


def serve(args):
    print(f"""
    ========================================================
      Stablecoin Off-Ramp -- Partner API
      API:     http://{args.host}:{args.port}/api/v1
      Docs:    http://localhost:{args.port}/docs
      ReDoc:   http://localhost:{args.port}/redoc
    ========================================================
    """)

    uvicorn.run(
        "offramp.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers,
        log_level="info",
    )


def create_partner(args):
    from offramp.config import get_settings
    from offramp.errors import ValidationError
    from offramp.services.partner_service import PartnerService
    from offramp.storage import open_storage

    settings = get_settings()
    if settings.STORAGE_BACKEND != "sql":
        print("create-partner needs STORAGE_BACKEND=sql; in-memory partners vanish with this process.")
        return 1

    from offramp.database import init_db
    init_db()

    methods = [m.strip() for m in args.kyc_methods.split(",")] if args.kyc_methods else None
    with open_storage() as storage:
        try:
            partner = PartnerService(storage, settings).create_partner(
                args.name, args.email, args.webhook_url, methods,
            )
        except ValidationError as e:
            print(f"Error: {e.message}")
            return 1

    print(f"""
    Partner created
      Partner ID:     {partner.id}
      Name:           {partner.name}
      API key:        {partner.api_key}
      Webhook secret: {partner.webhook_secret}
      Webhook URL:    {partner.webhook_url or '(none)'}

    Store the API key and webhook secret now; they are not shown again.
    """)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Stablecoin Off-Ramp Partner API")
    subcommands = parser.add_subparsers(dest="command")

    serve_parser = subcommands.add_parser("serve", help="Run the API server (default)")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve_parser.add_argument("--reload", action="store_true", help="Enable hot reload for development")
    serve_parser.add_argument("--workers", type=int, default=1, help="Number of workers (default: 1)")

    partner_parser = subcommands.add_parser("create-partner", help="Provision partner credentials")
    partner_parser.add_argument("--name", required=True)
    partner_parser.add_argument("--email", required=True)
    partner_parser.add_argument("--webhook-url", default=None)
    partner_parser.add_argument("--kyc-methods", default=None,
                                help="Comma-separated required KYC methods (default: global setting)")

    args = parser.parse_args(argv)
    if args.command == "create-partner":
        return create_partner(args)
    if args.command is None:
        args = parser.parse_args(["serve", *(argv or [])])
    serve(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
