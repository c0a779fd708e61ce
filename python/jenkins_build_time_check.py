#!/usr/bin/env python3
"""
jenkins_build_time_check.py

Purpose:
  Monitoring check (Mackerel/Nagios plugin convention) that reports builds of a
  Jenkins job which have been running longer than expected.

  Jenkins has no API returning only the builds that are still running, so the
  most recent --max-job-number builds are fetched and the ones without a result
  whose start time is older than the threshold are flagged.

Features:
  - Warning and critical thresholds in seconds
  - Connection settings from flags or JENKINS_SCHEME / JENKINS_HOST / JENKINS_PORT
  - Permissive decoding by default, --strict to report malformed responses as UNKNOWN
  - Optional request timeout (none by default: a hung Jenkins blocks the check)

Examples:
  python jenkins_build_time_check.py -j nightly
  python jenkins_build_time_check.py -s https -h ci.example.com -p 443 -j deploy -w 600 -c 1800

Output:
  JenkinsBuildTime CRITICAL: Build id = 57 takes too long time

Exit Codes:
  0 OK
  1 WARNING, invalid arguments or unexpected error
  2 CRITICAL
  3 UNKNOWN (Jenkins unreachable or response not decodable)
"""
from __future__ import annotations
import argparse
import datetime as dt
import enum
import os
import re
import sys
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests


CHECKER_NAME = "JenkinsBuildTime"
BUILDS_TREE = "builds[result,number,timestamp]"
EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)

_INTEGER = re.compile(r"[+-]?[0-9]+")


class CheckError(Exception):
    pass


class FetchError(CheckError):
    pass


class ParseError(CheckError, ValueError):
    pass


class Status(enum.Enum):
    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3

    @property
    def exit_code(self) -> int:
        return self.value


@dataclass(frozen=True)
class CheckResult:
    status: Status
    message: str

    def render(self, name: str = CHECKER_NAME) -> str:
        return f"{name} {self.status.name}: {self.message}"


@dataclass(frozen=True)
class CheckConfig:
    job_name: str
    scheme: str = "http"
    host: str = "localhost"
    port: int = 8080
    max_job_number: int = 10
    warning_second: int = 60
    critical_second: int = 300
    timeout: Optional[float] = None
    strict: bool = False
    verbose: bool = False

    @property
    def warning_threshold(self) -> dt.timedelta:
        return dt.timedelta(seconds=self.warning_second)

    @property
    def critical_threshold(self) -> dt.timedelta:
        return dt.timedelta(seconds=self.critical_second)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def decode_timestamp(raw: Any) -> dt.datetime:
    """Decode a Jenkins build timestamp (epoch milliseconds) into a UTC datetime.

    Jenkins may send the number bare or quoted; quotes are stripped before parsing.
    Sub-second precision is dropped.
    """
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        raise ParseError(f"invalid timestamp: {raw!r}")
    text = str(raw).replace('"', "")
    if not _INTEGER.fullmatch(text):
        raise ParseError(f"invalid timestamp: {raw!r}")
    millis = int(text)
    # truncate toward zero, like integer division on the epoch offset
    seconds = abs(millis) // 1000
    if millis < 0:
        seconds = -seconds
    try:
        return EPOCH + dt.timedelta(seconds=seconds)
    except OverflowError as e:
        raise ParseError(f"timestamp out of range: {raw!r}") from e


def encode_timestamp(value: dt.datetime) -> str:
    """Encode a datetime as epoch milliseconds. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return str((value - EPOCH) // dt.timedelta(milliseconds=1))


@dataclass(frozen=True)
class Build:
    number: int
    result: Optional[str]
    timestamp: Optional[dt.datetime]

    def is_unfinished(self) -> bool:
        return self.result is None

    def elapsed(self, now: dt.datetime) -> Optional[dt.timedelta]:
        if self.timestamp is None:
            return None
        return now - self.timestamp

    @classmethod
    def from_json(cls, item: Dict[str, Any], strict: bool = False) -> "Build":
        number = item.get("number")
        if isinstance(number, bool) or not isinstance(number, int):
            if strict:
                raise ParseError(f"invalid build number: {number!r}")
            number = 0

        result = item.get("result")
        if result is not None and not isinstance(result, str):
            if strict:
                raise ParseError(f"build {number}: invalid result: {result!r}")
            result = None

        raw_ts = item.get("timestamp")
        if raw_ts is None:
            if strict:
                raise ParseError(f"build {number}: missing timestamp")
            timestamp = None
        else:
            timestamp = decode_timestamp(raw_ts)

        return cls(number=number, result=result, timestamp=timestamp)


def parse_builds(payload: Any, strict: bool = False) -> List[Build]:
    if not isinstance(payload, dict) or not isinstance(payload.get("builds"), list):
        if strict:
            raise ParseError("response has no builds list")
        return []
    builds: List[Build] = []
    for item in payload["builds"]:
        if not isinstance(item, dict):
            if strict:
                raise ParseError(f"invalid build record: {item!r}")
            continue
        builds.append(Build.from_json(item, strict=strict))
    return builds


def build_url(config: CheckConfig) -> str:
    return (
        f"{config.scheme}://{config.host}:{config.port}/job/{config.job_name}"
        f"/api/json?tree={BUILDS_TREE}{{,{config.max_job_number}}}"
    )


def fetch_builds(config: CheckConfig) -> List[Build]:
    url = build_url(config)
    if config.verbose:
        print(f"GET {url}", file=sys.stderr)
    try:
        with requests.get(url, timeout=config.timeout) as resp:
            resp.raise_for_status()
            try:
                payload = resp.json()
            except ValueError as e:
                if config.strict:
                    raise ParseError(f"response is not JSON: {e}") from e
                payload = None
    except requests.RequestException as e:
        raise FetchError(str(e)) from e
    builds = parse_builds(payload, strict=config.strict)
    if config.verbose:
        print(f"received {len(builds)} builds", file=sys.stderr)
    return builds


def filter_unfinished_too_long_builds(
    builds: Iterable[Build], threshold: dt.timedelta, now: Optional[dt.datetime] = None
) -> List[Build]:
    now = now or utcnow()
    ret = []
    for b in builds:
        elapsed = b.elapsed(now)
        if b.is_unfinished() and elapsed is not None and elapsed > threshold:
            ret.append(b)
    return ret


def too_long_message(build: Build) -> str:
    return f"Build id = {build.number} takes too long time"


def evaluate(builds: Sequence[Build], config: CheckConfig, now: Optional[dt.datetime] = None) -> CheckResult:
    now = now or utcnow()
    if config.verbose:
        for b in builds:
            elapsed = b.elapsed(now)
            if b.is_unfinished() and elapsed is not None:
                print(f"build #{b.number} running for {int(elapsed.total_seconds())}s", file=sys.stderr)

    critical = filter_unfinished_too_long_builds(builds, config.critical_threshold, now)
    if critical:
        return CheckResult(Status.CRITICAL, too_long_message(critical[0]))

    warning = filter_unfinished_too_long_builds(builds, config.warning_threshold, now)
    if warning:
        return CheckResult(Status.WARNING, too_long_message(warning[0]))

    return CheckResult(Status.OK, "No build that takes too long time exists")


def run_check(config: CheckConfig, now: Optional[dt.datetime] = None) -> CheckResult:
    try:
        builds = fetch_builds(config)
    except FetchError as e:
        return CheckResult(Status.UNKNOWN, f"Failed to fetch jenkins builds: {e}")
    except ParseError as e:
        return CheckResult(Status.UNKNOWN, f"Failed to decode jenkins builds: {e}")
    return evaluate(builds, config, now)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    # -h is the Jenkins host, so help is only available as --help
    p = argparse.ArgumentParser(description="Check Jenkins builds that take too long", add_help=False)
    p.add_argument("--help", action="help", help="Show this help message and exit")
    p.add_argument("-s", "--scheme", default=os.environ.get("JENKINS_SCHEME", "http"), help="Jenkins scheme (default: http)")
    p.add_argument("-h", "--host", default=os.environ.get("JENKINS_HOST", "localhost"), help="Jenkins hostname (default: localhost)")
    p.add_argument("-p", "--port", type=int, default=os.environ.get("JENKINS_PORT", 8080), help="Jenkins port (default: 8080)")
    p.add_argument("-j", "--job-name", required=True, help="Monitor job name")
    p.add_argument("--max-job-number", type=int, default=10, help="Number of recent builds to monitor (default: 10)")
    p.add_argument("-w", "--warning-second", type=int, default=60, help="Trigger a warning if over the seconds (default: 60)")
    p.add_argument("-c", "--critical-second", type=int, default=300, help="Trigger a critical if over the seconds (default: 300)")
    p.add_argument("--timeout", type=float, help="HTTP timeout in seconds (default: wait indefinitely)")
    p.add_argument("--strict", action="store_true", help="Report malformed Jenkins responses as UNKNOWN")
    p.add_argument("-v", "--verbose", action="store_true", help="Print request details to stderr")
    args = p.parse_args(argv)

    if not 1 <= args.port <= 65535:
        p.error(f"invalid port: {args.port}")
    if args.max_job_number < 1:
        p.error("--max-job-number must be positive")
    if args.warning_second < 0 or args.critical_second < 0:
        p.error("thresholds must not be negative")
    if args.timeout is not None and args.timeout <= 0:
        p.error("--timeout must be positive")
    return args


def config_from_args(args: argparse.Namespace) -> CheckConfig:
    return CheckConfig(
        job_name=args.job_name,
        scheme=args.scheme,
        host=args.host,
        port=args.port,
        max_job_number=args.max_job_number,
        warning_second=args.warning_second,
        critical_second=args.critical_second,
        timeout=args.timeout,
        strict=args.strict,
        verbose=args.verbose,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        args = parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on usage errors; 2 means CRITICAL to the monitoring agent
        return 0 if not e.code else 1
    result = run_check(config_from_args(args))
    print(result.render())
    return result.status.exit_code


def cli() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print('Interrupted', file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f'ERROR: {e}', file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    cli()
