#!/usr/bin/env python3
"""
Dispatch Navigator - Responder Navigation Client
Entry Point Module
Handles dependency checking, argument parsing, the headless route query and
application startup.
"""
import argparse
import os
import sys
import time
import traceback
from pathlib import Path
from typing import Optional, List

VERSION = "1.0.0"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Dispatch Navigator - Responder Navigation Client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python __main__.py --destination 40.7484,-73.9857 --name "Incident 42"
  python __main__.py --destination 40.7484,-73.9857 --navigate --simulate feed.json
  python __main__.py --route-only --origin 40.7128,-74.0060 --destination 40.7484,-73.9857
  python __main__.py --route-only --offline --origin 40.7128,-74.0060 --destination 40.7484,-73.9857
  python __main__.py --check-deps
  dispatch-nav
        """
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"Dispatch Navigator {VERSION}"
    )
    parser.add_argument(
        "--check-deps", "-c",
        action="store_true",
        help="Check dependencies and exit"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        help="Custom directory for log files"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="JSON file with navigation settings"
    )
    parser.add_argument(
        "--destination",
        type=str,
        metavar="LAT,LON",
        help="Incident coordinates"
    )
    parser.add_argument(
        "--name",
        type=str,
        default="",
        help="Incident name used in announcements"
    )
    parser.add_argument(
        "--severity",
        choices=["high", "medium", "low"],
        help="Incident severity (sets the destination marker colour)"
    )
    parser.add_argument(
        "--navigate",
        action="store_true",
        help="Start navigating to the destination immediately"
    )
    parser.add_argument(
        "--modal",
        action="store_true",
        help="Show the map in a modal dialog instead of inline"
    )
    parser.add_argument(
        "--simulate",
        type=str,
        metavar="FILE",
        help="Replay positions from a JSON feed instead of the device GPS"
    )
    parser.add_argument(
        "--route-only",
        action="store_true",
        help="Print the route between --origin and --destination and exit"
    )
    parser.add_argument(
        "--origin",
        type=str,
        metavar="LAT,LON",
        help="Route origin for --route-only"
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Treat the network as unavailable"
    )
    return parser.parse_args(argv)


def check_dependencies() -> bool:
    """Check if required dependencies are available."""
    required_packages = {
        'PySide6': ('PySide6', 'GUI framework'),
    }
    optional_modules = {
        'QtPositioning': ('PySide6.QtPositioning', 'Device GPS (falls back to --simulate)'),
        'QtTextToSpeech': ('PySide6.QtTextToSpeech', 'Voice guidance'),
        'QtNetwork': ('PySide6.QtNetwork', 'Online/offline detection'),
    }
    missing_required = []
    missing_optional = []
    print(f"Python version: {sys.version}")
    print(f"Python executable: {sys.executable}\n")
    for display_name, (import_name, description) in required_packages.items():
        try:
            module = __import__(import_name)
            from PySide6 import QtCore, QtWidgets, QtGui  # noqa: F401
            print(f"OK {display_name}: {description} (version: {getattr(module, '__version__', 'unknown')})")
        except ImportError as e:
            missing_required.append(f"{display_name} ({description})")
            print(f"ERROR {display_name}: {description} - MISSING")
            print(f"   Import error: {e}")
    if not missing_required:
        for display_name, (import_name, description) in optional_modules.items():
            try:
                __import__(import_name)
                print(f"OK {display_name}: {description}")
            except ImportError:
                missing_optional.append(f"{display_name} ({description})")
                print(f"WARNING {display_name}: {description} - OPTIONAL")
    if missing_required:
        print("\nMissing required dependencies:")
        for package in missing_required:
            print(f"   - {package}")
        print("\nTry installing with:")
        print(f"   {sys.executable} -m pip install PySide6")
        return False
    if missing_optional:
        print("\nMissing optional Qt modules (some features may be unavailable):")
        for package in missing_optional:
            print(f"   - {package}")
    return True


def setup_environment():
    """Setup the application environment."""
    current_dir = Path(__file__).parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    os.environ.setdefault('QT_ENABLE_HIGHDPI_SCALING', '1')


def run_route_only(args: argparse.Namespace) -> int:
    """Resolve one route and print its summary without starting the GUI."""
    from config import ConfigurationError
    from logger import setup_logger
    from main import build_config, describe_route, parse_lat_lon
    from route_cache import RouteService

    if not args.origin or not args.destination:
        print("--route-only needs both --origin and --destination")
        return 2
    try:
        origin = parse_lat_lon(args.origin)
        destination = parse_lat_lon(args.destination)
        config = build_config(args.config)
    except (ValueError, ConfigurationError) as e:
        print(f"Invalid input: {e}")
        return 2
    setup_logger("dispatchnav", Path(args.log_dir) if args.log_dir else None)
    service = RouteService(config, is_online=lambda: not args.offline)
    route = service.get_route(origin, destination)
    for line in describe_route(route):
        print(line)
    return 0 if not route.is_fallback else 3


def main(argv: Optional[List[str]] = None):
    """Main entry point for Dispatch Navigator."""
    try:
        args = parse_arguments(argv)
        print("\n" + "=" * 60)
        print("Dispatch Navigator - Responder Navigation Client")
        print(f"   Version {VERSION}")
        print("=" * 60 + "\n")
        setup_environment()
        print("Checking dependencies...")
        deps_ok = check_dependencies()
        if args.check_deps:
            if deps_ok:
                print("\nAll dependencies are satisfied!")
                return 0
            print("\nSome dependencies are missing!")
            return 1
        if not deps_ok:
            print("\nCannot start application due to missing dependencies.")
            return 1
        if args.route_only:
            return run_route_only(args)
        if args.debug:
            print("Debug logging enabled\n")
        from main import main as run_main
        return run_main(args)
    except KeyboardInterrupt:
        print("\n\nApplication interrupted by user")
        return 130
    except Exception as e:
        print("\nCritical error starting Dispatch Navigator:")
        print(f"   {type(e).__name__}: {e}")
        if args.debug if 'args' in locals() else False:
            print("\nDebug traceback:")
            traceback.print_exc()
        else:
            print("\nRun with --debug for detailed error information")
        return 1


if __name__ == "__main__":
    start_time = time.time()
    exit_code = main()
    print(f"\nDispatch Navigator ran for {time.time() - start_time:.2f} seconds")
    sys.exit(exit_code)
