"""CLI entry point for DEMONICSKULL.COM."""

import argparse
import sys

import uvicorn

from .app import create_app
from .config import Config, ConfigError
from .throttle import SPEED_TIERS, ThrottleConfigError


def main():
    parser = argparse.ArgumentParser(description="DEMONICSKULL.COM web server")
    parser.add_argument(
        "--config", default=None, help="Path to YAML config file"
    )
    parser.add_argument(
        "--host", default=None, help="Host to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port", type=int, default=None, help="Port to listen on (default: 3000)"
    )

    # Modem
    parser.add_argument(
        "--speed",
        default=None,
        choices=list(SPEED_TIERS.keys()),
        help="Simulated connection speed (default: 56k)",
    )
    parser.add_argument(
        "--no-modem", action="store_true", help="Disable the 56k modem simulator"
    )

    # Storage
    parser.add_argument(
        "--data-dir", default=None, help="Directory for guestbook and counter files"
    )
    parser.add_argument(
        "--redis", default=None, help="Store entries and counter in Redis at this URL"
    )

    args = parser.parse_args()

    # Build config: YAML file → env vars → CLI args (highest priority)
    if args.config:
        config = Config.from_yaml(args.config)
    else:
        config = Config.from_env()

    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.speed is not None:
        config.modem.speed = args.speed
    if args.no_modem:
        config.modem.enabled = False
    if args.data_dir is not None:
        config.storage.data_dir = args.data_dir
    if args.redis is not None:
        config.storage.backend = "redis"
        config.storage.redis_url = args.redis

    try:
        app = create_app(config)
    except ThrottleConfigError as e:
        print(f"[MODEM] Invalid modem configuration: {e}", file=sys.stderr)
        sys.exit(2)
    except ConfigError as e:
        print(f"[CONFIG] Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    print("")
    print("  =============================================")
    print("   DEMONICSKULL.COM is now running!")
    print('   "I am Murray! The all-powerful demonic server!"')
    print("  =============================================")
    print("")
    print(f"  Visit: http://localhost:{config.server.port}")
    print("")
    if config.modem_active:
        bytes_per_sec = app.state.modem_profile.bytes_per_second
        print(f"  [{config.modem.speed.upper()} MODEM MODE: ON]")
        print(f"  All responses throttled to ~{bytes_per_sec / 1000:g} KB/s")
        print("  Visitors will experience authentic 1999 load times!")
        print(f"  Tip: Add ?{config.modem.bypass_param}=1 to any URL to bypass throttling")
        print("  Tip: Set MODEM_MODE=false to disable globally")
        print("")

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
