#!/usr/bin/env python3
"""
MachineLink - agent CLI
"""

import argparse
import sys

from machinelink.utils.secure_logging import setup_secure_logging


def create_parser():
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="MachineLink remote agent"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    serve_parser = subparsers.add_parser("serve", help="Start the agent HTTP server")
    serve_parser.add_argument("--host", default=None, help="Interface to bind (default 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to listen on (default 9000)")
    serve_parser.add_argument("--log-level", default=None,
                              choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                              help="Log level (default from MACHINELINK_LOG_LEVEL)")

    return parser


def handle_serve(args):
    """Handle serve command."""
    import uvicorn

    from machinelink.server.agent_server import create_app
    from machinelink.server.config import AgentServerConfig

    setup_secure_logging(args.log_level)
    config = AgentServerConfig.from_env(host=args.host, port=args.port)

    print(f"Starting MachineLink agent on http://{config.host}:{config.port}")
    app = create_app(config=config)
    uvicorn.run(app, host=config.host, port=config.port,
                log_level=(args.log_level or "info").lower())


def main(argv=None):
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    handlers = {
        "serve": handle_serve,
    }

    handler = handlers.get(args.command)
    try:
        handler(args)
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
