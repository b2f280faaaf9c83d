#!/usr/bin/env python3
"""CLI entry point for infratest-driver.

Drives single lifecycle steps by hand, mostly for debugging an example
configuration or cleaning up after an interrupted test run:
- plan:    infratest plan examples/alb -var alb_name=test-abc
- apply:   infratest apply examples/alb --namespace abc123 -var alb_name=test-abc
- output:  infratest output examples/alb alb_dns_name --namespace abc123
- destroy: infratest destroy examples/alb --namespace abc123 -var alb_name=test-abc
- probe:   infratest probe http://my-alb.example.com --status 404 --body '404: page not found'
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from common import HarnessError
from config import ConfigError, load_config
from http_helper import http_get_with_retry, http_get_with_retry_custom_validation
from tofu import Lifecycle, ProvisioningOptions

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def parse_var(value: str) -> tuple[str, object]:
    """Parse a -var key=value argument.

    Values that decode as JSON (numbers, booleans, objects, lists) keep
    their type; everything else stays a string.
    """
    if '=' not in value:
        raise argparse.ArgumentTypeError(f"expected key=value, got '{value}'")
    key, raw = value.split('=', 1)
    if not key:
        raise argparse.ArgumentTypeError(f"empty variable name in '{value}'")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


def _add_lifecycle_args(parser: argparse.ArgumentParser, namespace_required: bool) -> None:
    parser.add_argument('config_dir', type=Path, help='Configuration directory')
    parser.add_argument(
        '-var', dest='variables',
        action='append',
        type=parse_var,
        default=[],
        metavar='KEY=VALUE',
        help='Input variable (can be repeated)'
    )
    parser.add_argument(
        '--namespace', '-n',
        required=namespace_required,
        help='State namespace (reuse the same value for apply, output and destroy)'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='infratest',
        description='Lifecycle and validation helpers for infrastructure tests'
    )
    parser.add_argument('--config', '-c', type=Path, help='Harness config file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    sub = parser.add_subparsers(dest='command', required=True)

    plan_p = sub.add_parser('plan', help='Plan and print resource counts')
    _add_lifecycle_args(plan_p, namespace_required=False)
    plan_p.add_argument('--json', action='store_true', help='Print planned values as JSON')

    apply_p = sub.add_parser('apply', help='Init and apply into an isolated state')
    _add_lifecycle_args(apply_p, namespace_required=True)

    destroy_p = sub.add_parser('destroy', help='Destroy an isolated state (idempotent)')
    _add_lifecycle_args(destroy_p, namespace_required=True)

    output_p = sub.add_parser('output', help='Print one output value as JSON')
    output_p.add_argument('config_dir', type=Path, help='Configuration directory')
    output_p.add_argument('name', help='Output name')
    output_p.add_argument('--namespace', '-n', required=True, help='State namespace')

    probe_p = sub.add_parser('probe', help='GET a URL until it returns the expected response')
    probe_p.add_argument('url', help='URL to probe')
    probe_p.add_argument('--status', type=int, help='Expected status code (default: any 2xx)')
    probe_p.add_argument('--body', default='', help='Text the body must contain')
    probe_p.add_argument('--retries', type=int, help='Maximum attempts (default from config)')
    probe_p.add_argument('--interval', type=float, help='Seconds between attempts (default from config)')

    return parser


def _options(args) -> ProvisioningOptions:
    kwargs = dict(config_dir=args.config_dir, variables=dict(args.variables))
    if getattr(args, 'namespace', None):
        kwargs['namespace'] = args.namespace
    return ProvisioningOptions(**kwargs)


def cmd_plan(args, config) -> int:
    lifecycle = Lifecycle(_options(args), config)
    try:
        report = lifecycle.init_and_plan()
    finally:
        lifecycle.discard()
    summary = report.summary
    print(f"Plan: {summary.add} to add, {summary.change} to change, {summary.destroy} to destroy.")
    if args.json:
        planned = {addr: res.attributes for addr, res in report.planned_values.items()}
        print(json.dumps(planned, indent=2, sort_keys=True))
    return 0


def cmd_apply(args, config) -> int:
    lifecycle = Lifecycle(_options(args), config)
    lifecycle.init_and_apply()
    print(f"Applied {args.config_dir} (namespace: {lifecycle.options.namespace})")
    return 0


def cmd_destroy(args, config) -> int:
    Lifecycle(_options(args), config).destroy()
    print(f"Destroyed {args.config_dir} (namespace: {args.namespace})")
    return 0


def cmd_output(args, config) -> int:
    options = ProvisioningOptions(config_dir=args.config_dir, namespace=args.namespace)
    value = Lifecycle(options, config).output(args.name)
    print(json.dumps(value))
    return 0


def cmd_probe(args, config) -> int:
    retries = args.retries if args.retries is not None else config.retry_max_attempts
    interval = args.interval if args.interval is not None else config.retry_interval
    kwargs = dict(timeout=config.http_timeout, verify=config.http_verify_tls)

    if args.status is not None:
        outcome = http_get_with_retry(args.url, args.status, args.body, retries, interval, **kwargs)
    else:
        outcome = http_get_with_retry_custom_validation(
            args.url, retries, interval,
            lambda status, body: 200 <= status < 300 and args.body in body,
            **kwargs
        )
    print(outcome)
    return 0


COMMANDS = {
    'plan': cmd_plan,
    'apply': cmd_apply,
    'destroy': cmd_destroy,
    'output': cmd_output,
    'probe': cmd_probe,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
        return COMMANDS[args.command](args, config)
    except (ConfigError, HarnessError, ValueError) as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
