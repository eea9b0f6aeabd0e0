import argparse
import sys


def main():
    parser = argparse.ArgumentParser(
        prog="streamflow",
        description="Backpressure-aware streaming pipelines.",
    )
    subparsers = parser.add_subparsers(dest="command")

    sub = subparsers.add_parser("run", help="Run a file -> transforms -> file pipeline.")
    sub.add_argument(
        "config_paths",
        type=str,
        nargs="+",
        help="Path to the configuration file. Later files override earlier ones.",
    )

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    sys.exit(_dispatch(args.command, args.config_paths))


def _dispatch(command: str, config_paths: list[str]) -> int:
    """Lazy-import and run the appropriate subcommand."""
    if command == "run":
        from streamflow.scripts.run import main as run
    else:
        raise ValueError(f"Unknown command: {command}")

    return run(config_paths)


if __name__ == "__main__":
    main()
