"""clawpen CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from clawpen.config import DEFAULT_CONFIG_NAME, ServiceConfig, load_config
from clawpen.errors import ClawpenError
from clawpen.policy import DEFAULT_LISTS, compose_service, validate


# ── Default template for `clawpen init` ──────────────────────────────────────

_DEFAULT_CONFIG = """\
# clawpen.yaml — declarative configuration for one sandboxed agent service

user: zeroclaw
group: zeroclaw
state_dir: /var/lib/zeroclaw
binary: zeroclaw
args: [daemon]

provider: anthropic
model: claude-sonnet-4-20250514
api_key_file: {api_key_file}

gateway:
  port: 3000
  host: 127.0.0.1

telegram:
  enable: false
  bot_token_file: null
  allowed_users: []
  mention_only: false

autonomy:
  level: supervised
  workspace_only: true
  extra_allowed_commands: []
  extra_forbidden_paths: []
  max_actions_per_hour: 20
  max_cost_per_day_cents: 500

resources:
  memory_max: 1G
  cpu_quota: 100%
  tasks_max: 256

restart:
  delay_seconds: 5
"""


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _init_config(path: Path, api_key_file: str | None) -> None:
    """Write a starter clawpen.yaml."""
    if path.exists():
        print(f"Error: {path} already exists", file=sys.stderr)
        print("Remove it first if you want to re-initialize.", file=sys.stderr)
        sys.exit(1)
    path.write_text(_DEFAULT_CONFIG.format(api_key_file=api_key_file or "null"))
    print(f"Wrote {path}")
    print()
    print("Next steps:")
    print(f"  1. Review {path} (api_key_file must point at your provider key)")
    print(f"  2. Run: clawpen --config {path} check")
    print(f"  3. Run: clawpen --config {path} provision && clawpen --config {path} run")


def _check(config: ServiceConfig) -> None:
    """Compose and validate; print every defect."""
    doc = compose_service(config, DEFAULT_LISTS)
    errors = validate(doc)
    if errors:
        print(f"Policy has {len(errors)} error(s):", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        sys.exit(1)
    print(
        f"OK: provider={doc.provider} model={doc.model} "
        f"commands={len(doc.autonomy.allowed_commands)} "
        f"forbidden_paths={len(doc.autonomy.forbidden_paths)} "
        f"telegram={'on' if doc.telegram else 'off'}"
    )


def _write_or_print(text: str, out: Path | None) -> None:
    if out is None:
        sys.stdout.write(text)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text)
    print(f"Wrote {out}")


def _render(config: ServiceConfig, out: Path | None) -> None:
    from clawpen.pipeline import build_deployment

    _write_or_print(build_deployment(config).artifact.text, out)


def _unit(config: ServiceConfig, config_path: Path, out_dir: Path | None) -> None:
    from clawpen.pipeline import build_deployment
    from clawpen.sandbox import render_sysusers, render_tmpfiles, render_unit

    deployment = build_deployment(config)
    instance = deployment.instance
    exec_start = ["clawpen", "--config", str(config_path.resolve()), "exec"]
    unit_text = render_unit(deployment.profile(), instance, exec_start)
    tmpfiles_text = render_tmpfiles(instance)
    sysusers_text = render_sysusers(instance)
    if out_dir is None:
        sys.stdout.write(unit_text)
        sys.stdout.write("\n# sysusers.d\n")
        sys.stdout.write(sysusers_text)
        sys.stdout.write("\n# tmpfiles.d\n")
        sys.stdout.write(tmpfiles_text)
        return
    _write_or_print(unit_text, out_dir / f"{instance.name}.service")
    _write_or_print(sysusers_text, out_dir / "sysusers.d" / f"{instance.name}.conf")
    _write_or_print(tmpfiles_text, out_dir / "tmpfiles.d" / f"{instance.name}.conf")


def _provision(config: ServiceConfig) -> None:
    from clawpen.sandbox import derive_instance, provision

    for path in provision(derive_instance(config)):
        print(f"Provisioned {path}")


def _run(config: ServiceConfig) -> int:
    from clawpen.pipeline import build_deployment, make_materializer
    from clawpen.sandbox import SandboxLauncher, provision
    from clawpen.supervisor import Supervisor

    deployment = build_deployment(config)
    provision(deployment.instance)
    supervisor = Supervisor(
        deployment,
        make_materializer(deployment),
        SandboxLauncher(deployment.instance),
    )
    return asyncio.run(supervisor.run())


def _exec(config: ServiceConfig) -> None:
    from clawpen.pipeline import build_deployment, make_materializer
    from clawpen.sandbox import HostProbe, exec_in_place

    deployment = build_deployment(config)
    # Refuse before any secret is read.
    probe = HostProbe()
    probe.check_confined()
    runtime = make_materializer(deployment).materialize(
        deployment.artifact, deployment.secret_refs
    )
    exec_in_place(config.binary, config.args, runtime.agent_env.env, probe)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="clawpen",
        description="clawpen — declarative policy and sandbox for a long-running agent",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(DEFAULT_CONFIG_NAME),
        help=f"Path to the service configuration (default: ./{DEFAULT_CONFIG_NAME})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser("init", help="Write a starter service configuration")
    init_parser.add_argument("--api-key-file", help="Path to the provider API key file")

    subparsers.add_parser("check", help="Compose and validate the policy")

    render_parser = subparsers.add_parser("render", help="Render config.toml with placeholders")
    render_parser.add_argument("--out", type=Path, help="Output file (default: stdout)")

    unit_parser = subparsers.add_parser(
        "unit", help="Render the systemd unit with its sysusers and tmpfiles rules"
    )
    unit_parser.add_argument("--out", type=Path, help="Output directory (default: stdout)")

    subparsers.add_parser("provision", help="Create the service state directories")
    subparsers.add_parser("run", help="Materialize secrets and supervise the sandboxed agent")
    subparsers.add_parser(
        "exec", help="Materialize secrets and exec the agent (ExecStart of the rendered unit)"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "init":
        _init_config(args.config, args.api_key_file)
        return

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        _fail(f"{exc}. Run 'clawpen init' to create one, or pass --config")
    except (ValidationError, ValueError, yaml.YAMLError) as exc:
        _fail(f"invalid config {args.config}:\n{exc}")

    try:
        if args.command == "check":
            _check(config)
        elif args.command == "render":
            _render(config, args.out)
        elif args.command == "unit":
            _unit(config, args.config, args.out)
        elif args.command == "provision":
            _provision(config)
        elif args.command == "run":
            code = _run(config)
            if code != 0:
                sys.exit(code)
        elif args.command == "exec":
            _exec(config)
    except (ClawpenError, OSError) as exc:
        _fail(str(exc))


if __name__ == "__main__":
    main()
