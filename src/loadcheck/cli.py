from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Sequence

from loadcheck.config import (
    RunConfig,
    apply_options,
    load_options_file,
    parse_env,
    parse_key_values,
)
from loadcheck.errors import ConfigError
from loadcheck.loadgen.runner import ExitCode, exit_code_for, run_test
from loadcheck.report import render, write_report
from loadcheck.scenarios import BUILTIN, Scenario, resolve_scenario
from loadcheck.thresholds import evaluate

logger = logging.getLogger("loadcheck")


def _cli_options(args: argparse.Namespace) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if args.vus is not None:
        options["vus"] = args.vus
    if args.duration is not None:
        options["duration"] = args.duration
    if args.iterations is not None:
        options["iterations"] = args.iterations
    if args.stage:
        options["stages"] = args.stage
    if args.threshold:
        thresholds: dict[str, list[str]] = {}
        for item in args.threshold:
            metric, sep, expression = item.partition("=")
            if not sep:
                msg = f"Expected METRIC=EXPRESSION, got {item!r}"
                raise ConfigError(msg)
            thresholds.setdefault(metric.strip(), []).append(expression)
        options["thresholds"] = thresholds
    if args.graceful_stop is not None:
        options["gracefulStop"] = args.graceful_stop
    if args.max_iteration_errors is not None:
        options["maxIterationErrors"] = args.max_iteration_errors
    if args.summary_export is not None:
        options["summaryExport"] = args.summary_export
    return options


def build_config(args: argparse.Namespace, scenario: Scenario) -> RunConfig:
    layers: list[dict[str, Any]] = [dict(scenario.options)]
    if args.config is not None:
        layers.append(load_options_file(Path(args.config)))
    layers.append(_cli_options(args))
    env: dict[str, str] = dict(os.environ)
    for layer in layers:
        env.update(parse_env(layer.pop("env", {})))
    env.update(parse_key_values(args.env or []))
    base = RunConfig(vus=1, iterations=1)
    return apply_options(base, *layers, {"env": env})


def _run(args: argparse.Namespace) -> int:
    scenario = resolve_scenario(args.scenario)
    config = build_config(args, scenario)
    summary = asyncio.run(run_test(config, scenario.fn, handle_signals=True, exec_fns=scenario.exec_fns))
    results = evaluate(summary, config.thresholds)
    report = render(summary, results)
    print(report.text)
    if config.summary_path is not None:
        write_report(report, config.summary_path)
    code = exit_code_for(summary, results)
    if code is not ExitCode.OK:
        logger.warning("Run finished with exit code %d (%s)", code, code.name)
    return code


def _list_scenarios(_: argparse.Namespace) -> int:
    for name, scenario in sorted(BUILTIN.items()):
        print(f"{name:16} {scenario.description}")
    return ExitCode.OK


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HTTP load generation and smoke validation")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a scenario and evaluate thresholds")
    run.add_argument("--scenario", default="smoke", help="Built-in name or module:attribute")
    run.add_argument("--config", help="JSON options file")
    run.add_argument("--vus", type=int)
    run.add_argument("--duration", help="e.g. 30s, 1m30s")
    run.add_argument("--iterations", type=int, help="Total iterations shared by all VUs")
    run.add_argument("--stage", action="append", help="DURATION:TARGET, repeatable")
    run.add_argument("--threshold", action="append", help="METRIC=EXPRESSION, repeatable")
    run.add_argument("--env", "-e", action="append", help="KEY=VALUE, repeatable")
    run.add_argument("--graceful-stop", help="Grace period for in-flight iterations")
    run.add_argument("--max-iteration-errors", type=int)
    run.add_argument("--summary-export", help="Path for the JSON summary")
    run.set_defaults(handler=_run)

    scenarios = sub.add_parser("scenarios", help="List built-in scenarios")
    scenarios.set_defaults(handler=_list_scenarios)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = _parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        code = args.handler(args)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        code = ExitCode.INVALID_CONFIG
    raise SystemExit(int(code))


if __name__ == "__main__":
    main()
