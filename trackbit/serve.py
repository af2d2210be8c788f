#!/usr/bin/env python3
"""
Trackbit API server

Usage:
    # Direct run
    python -m trackbit.serve --db-path data/trackbit.db

    # With gunicorn
    gunicorn -c deploy/gunicorn.conf.py 'trackbit.serve:create_app_from_env()'

Environment variables: see trackbit.config.
"""

import logging
import os
import sys

from .config import load_settings


def create_app_from_env():
    """Application factory for gunicorn; all settings come from TRACKBIT_* variables."""
    from .app import create_app
    return create_app(settings=load_settings())


def main(argv=None):
    """CLI entry point — run directly with uvicorn (no gunicorn needed)."""
    import argparse

    parser = argparse.ArgumentParser(description='Trackbit API server')
    parser.add_argument('--db-path', type=str, default=None,
                        help='SQLite database file (overrides TRACKBIT_DB_PATH env)')
    parser.add_argument('--host', type=str, default='127.0.0.1',
                        help='Bind address (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=None,
                        help='Server port (overrides TRACKBIT_PORT env, default: 8000)')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Log level (overrides TRACKBIT_LOG_LEVEL env, default: info)')
    parser.add_argument('--init-db', action='store_true',
                        help='Create the schema and exit')
    parser.add_argument('--seed', action='store_true',
                        help='With --init-db: also insert default limits and exercises')
    args = parser.parse_args(argv)

    # CLI args override env vars
    if args.db_path:
        os.environ['TRACKBIT_DB_PATH'] = os.path.abspath(args.db_path)
    if args.port:
        os.environ['TRACKBIT_PORT'] = str(args.port)
    if args.log_level:
        os.environ['TRACKBIT_LOG_LEVEL'] = args.log_level

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper(),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    if args.init_db:
        from .db import init_db, seed_defaults
        conn = init_db(settings.db_path)
        try:
            if args.seed:
                seed_defaults(conn)
        finally:
            conn.close()
        print(f"Database ready: {settings.db_path}")
        return 0

    print("=" * 60)
    print("Trackbit API")
    print("=" * 60)
    print(f"Database: {settings.db_path}")
    print(f"Bind:     {args.host}:{settings.port}")
    if settings.rate_limit > 0:
        print(f"Rate:     {settings.rate_limit} requests / {settings.rate_window}s")
    print("=" * 60)
    print()

    import uvicorn
    uvicorn.run(
        'trackbit.serve:create_app_from_env',
        host=args.host,
        port=settings.port,
        log_level=settings.log_level,
        factory=True,
    )
    return 0


if __name__ == '__main__':
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nShutting down Trackbit...")
        sys.exit(0)
