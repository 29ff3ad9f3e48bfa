"""Entry point for the mcpbridge CLI."""

import asyncio

from mcpbridge.cli.arg_parser import parse_args


def main() -> None:
    """Entry point for the mcpbridge CLI."""
    args = parse_args()
    try:
        if args.command == "health":
            from mcpbridge.cli.serve import cmd_health

            exit_code = asyncio.run(cmd_health(args.port, args.host, args.timeout))
        else:
            from mcpbridge.cli.serve import serve_main

            exit_code = serve_main(
                port=args.port,
                host=args.host,
                entry_point=args.entry_point,
                user_code_path=args.user_code_path,
                child_command=args.child_command,
                config_path=args.config,
                log_dir=args.log_dir,
                verbose=args.verbose,
            )
    except KeyboardInterrupt:
        # Ctrl+C before signal handlers were installed
        exit_code = 130
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
