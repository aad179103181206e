"""
Command-line interface for jobrunner.

Provides tools for:
- Checking a time-of-day literal before putting it in a job
- Simulating a rule against a synthetic clock
- Running the demo job with the real clock
"""

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from colored_logger import get_colored_logger, setup_colored_logging

from jobrunner import JobRunner, SchedulerError, TimeUnit, load_config, parse_at_time
from jobrunner.errors import ParseError
from jobrunner.evaluator import as_utc

logger = get_colored_logger(__name__)

UNIT_CHOICES = [unit.value for unit in TimeUnit]


def _parse_timestamp(text: str) -> datetime:
    """ISO 8601 timestamp, read as UTC when it has no offset."""
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ParseError(f"Invalid timestamp {text!r}, expected ISO 8601", text) from None


class JobRunnerCLI:
    """Command-line interface for the job runner."""

    def create_parser(self) -> argparse.ArgumentParser:
        """Create the argument parser for jobrunner commands."""
        parser = argparse.ArgumentParser(
            prog="jobrunner", description="Run and inspect periodic jobs"
        )
        parser.add_argument("--config", help="Path to a YAML config file")
        parser.add_argument(
            "--log-level", help="Log level (trace, debug, info, ...), overrides config"
        )

        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        check_parser = subparsers.add_parser(
            "check-time", help="Validate an HH:MM time of day"
        )
        check_parser.add_argument("time", help="Time of day, e.g. '19:24'")

        simulate_parser = subparsers.add_parser(
            "simulate", help="Show when a rule fires over a synthetic clock"
        )
        simulate_parser.add_argument(
            "--every", type=int, default=1, help="Interval between runs"
        )
        simulate_parser.add_argument(
            "--unit", required=True, choices=UNIT_CHOICES, help="Interval unit"
        )
        simulate_parser.add_argument("--at", help="Earliest time of day (HH:MM, UTC)")
        simulate_parser.add_argument("--on", help="Only run on this weekday")
        simulate_parser.add_argument("--repeat", type=int, help="Maximum runs")
        simulate_parser.add_argument(
            "--start", help="First tick as ISO 8601 (default: now, UTC)"
        )
        simulate_parser.add_argument(
            "--step", type=int, default=60, help="Seconds between ticks"
        )
        simulate_parser.add_argument(
            "--ticks", type=int, default=100, help="Number of ticks to simulate"
        )
        simulate_parser.add_argument(
            "--json", action="store_true", help="Print fire times as JSON"
        )

        demo_parser = subparsers.add_parser(
            "demo", help="Run a job every 3 seconds, 3 times"
        )
        demo_parser.add_argument(
            "--ticks", type=int, help="Stop after this many ticks (default: config)"
        )
        demo_parser.add_argument(
            "--status", action="store_true", help="Print runner status when done"
        )

        return parser

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI with given arguments."""
        parser = self.create_parser()
        parsed_args = parser.parse_args(args)

        if not parsed_args.command:
            parser.print_help()
            return 0

        try:
            self.config = load_config(parsed_args.config)
            setup_colored_logging(
                parsed_args.log_level or self.config["logging"]["level"]
            )
            return self._execute_command(parsed_args)

        except (SchedulerError, ValueError) as e:
            logger.error("Command failed: %s", e)
            return 1

    def _execute_command(self, args: argparse.Namespace) -> int:
        """Execute the requested command."""
        command_map = {
            "check-time": self._cmd_check_time,
            "simulate": self._cmd_simulate,
            "demo": self._cmd_demo,
        }

        handler = command_map.get(args.command)
        if not handler:
            logger.error("Unknown command: %s", args.command)
            return 1

        return handler(args)

    def _cmd_check_time(self, args: argparse.Namespace) -> int:
        """Validate a time-of-day literal."""
        try:
            at_time = parse_at_time(args.time)
        except ParseError as e:
            logger.error("%s", e)
            return 1

        logger.info("Valid time of day: %s", at_time.strftime("%H:%M"))
        return 0

    def _cmd_simulate(self, args: argparse.Namespace) -> int:
        """Tick a single job over a synthetic clock and report when it fires."""
        if args.step <= 0:
            logger.error("--step must be positive")
            return 1
        if args.ticks < 0:
            logger.error("--ticks cannot be negative")
            return 1

        start = (
            _parse_timestamp(args.start)
            if args.start
            else datetime.now(timezone.utc).replace(microsecond=0)
        )

        runner = JobRunner()
        builder = getattr(runner.every(args.every), args.unit)()
        if args.at:
            builder.at(args.at)
        if args.on:
            builder.on(args.on)
        if args.repeat is not None:
            builder.repeat(args.repeat)

        fired_at: List[datetime] = []
        current = {"now": start}

        def record_fire():
            fired_at.append(current["now"])

        job = builder.do(record_fire)

        for i in range(args.ticks):
            current["now"] = start + timedelta(seconds=args.step * i)
            runner.tick(current["now"])

        end = start + timedelta(seconds=args.step * max(args.ticks - 1, 0))

        if args.json:
            print(
                json.dumps(
                    {
                        "rule": job.rule.describe(),
                        "start": start.isoformat(),
                        "end": end.isoformat(),
                        "fired_at": [moment.isoformat() for moment in fired_at],
                    },
                    indent=2,
                )
            )
            return 0

        print(f"\nRule: {job.rule.describe()}")
        print(f"Window: {start.isoformat()} .. {end.isoformat()} ({args.ticks} ticks)")
        print(f"Fired {len(fired_at)} time(s):")
        for moment in fired_at:
            print(f"  {moment.strftime('%Y-%m-%d %H:%M:%S')} {moment.strftime('%A')}")

        return 0

    def _cmd_demo(self, args: argparse.Namespace) -> int:
        """Run the demo job against the wall clock."""
        runner_config = self.config["runner"]
        max_ticks = args.ticks if args.ticks is not None else runner_config["max_ticks"]

        runner = JobRunner()

        def announce():
            print("task scheduled")

        runner.every(3).seconds().repeat(3).do(announce)

        logger.info("Demo running, press Ctrl+C to stop")
        runner.run_forever(
            tick_interval_seconds=runner_config["tick_interval_seconds"],
            max_ticks=max_ticks,
        )

        if args.status:
            print(json.dumps(runner.get_status(), indent=2))

        return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the jobrunner CLI."""
    cli = JobRunnerCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
