from __future__ import annotations

import argparse
import signal
import sys
from collections.abc import Sequence

from layerkit import BuildCancelledError, CancelToken, LayerError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="release-build", add_help=True)
    parser.add_argument("--config", dest="config_path", help="Path to a build config YAML file")
    parser.add_argument("--root", help="Project directory that relative config paths resolve against")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output")
    parser.add_argument("--log-file", help="Also write the debug log to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Build the terminal layer (if stale) and the package")
    build.add_argument("--timeout", type=float, default=None, help="Abort after this many seconds")
    build.add_argument(
        "--force", action="store_true", help="Run the package step even if the package already exists"
    )

    layer = sub.add_parser("layer", help="Build one layer and any stale ancestors")
    layer.add_argument("name")
    layer.add_argument("--timeout", type=float, default=None, help="Abort after this many seconds")

    sub.add_parser("write-cache-keys", help="Record current fingerprints as markers for all layers")
    sub.add_parser("debug", help="Print fingerprint, marker and source id of each layer")
    sub.add_parser("list-layers", help="List layers in build order")
    sub.add_parser("package-name", help="Print the package archive filename")
    sub.add_parser("clean", help="Delete all layer markers")

    return parser


def _install_sigterm(cancel: CancelToken):
    try:
        return signal.signal(signal.SIGTERM, lambda _signum, _frame: cancel.cancel())
    except ValueError:
        # not in the main thread
        return None


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    from .app.build import debug_lines, load_build_config, make_controller, run_build
    from .foundation.logging_utils import setup_logger
    from .framework.docker import DockerBuildAction
    from .framework.package import PackageBuildError, package_filename

    logger = setup_logger(verbose=args.verbose, log_path=args.log_file)

    try:
        config = load_build_config(config_path=args.config_path, root=args.root, logger=logger)

        if args.command == "package-name":
            print(package_filename(config.package, config.toolchain))
            return 0

        ignore_files = [args.log_file] if args.log_file else []
        controller = make_controller(config, logger=logger, ignore_files=ignore_files)

        if args.command == "list-layers":
            for row in controller.registry.describe():
                parent = row["parent"] or "-"
                print(f"{row['name']:<12} parent={parent:<12} {row['doc'] or ''}".rstrip())
            return 0

        if args.command == "debug":
            for line in debug_lines(controller):
                print(line)
            return 0

        if args.command == "write-cache-keys":
            controller.write_cache_keys()
            return 0

        if args.command == "clean":
            controller.clear()
            logger.info("==> All markers removed.")
            return 0

        cancel = CancelToken(timeout=args.timeout)
        previous_handler = _install_sigterm(cancel)
        try:
            if args.command == "layer":
                action = DockerBuildAction(config, logger=logger)
                report = controller.ensure_built(args.name, action, cancel=cancel)
                print(action.image_for(report.target, report.fingerprint))
                return 0

            if args.command == "build":
                result = run_build(config, controller, cancel=cancel, force=args.force, logger=logger)
                print(result.package_path)
                return 0
        finally:
            if previous_handler is not None:
                signal.signal(signal.SIGTERM, previous_handler)
    except BuildCancelledError as exc:
        logger.error("error: %s", exc)
        return 130
    except KeyboardInterrupt:
        logger.error("error: interrupted")
        return 130
    except (LayerError, PackageBuildError, ValueError, FileNotFoundError) as exc:
        logger.error("error: %s", exc)
        return 1

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
