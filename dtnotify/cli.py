"""dtnotify CLI — typer-based command interface."""

from __future__ import annotations

import logging
from pathlib import Path

import typer

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="dtnotify",
    help="dtnotify — report CI build events to a monitoring server",
    no_args_is_help=True,
)

# -------------------------------------------------------------------
# Templates
# -------------------------------------------------------------------

DEFAULT_CONFIG_TEMPLATE = """\
# .dtnotify/config.yaml — team-shared configuration
# Top-level keys are global defaults; jobs.<name> overrides them per job.
server_url: ""            # e.g. https://abc123.live.dynatrace.com
root_url: ""              # CI root URL; JENKINS_URL is used when empty
credentials_id: dt-api-token
ignore_unverified_ssl: false
entity_id: ""
include_build_number_in_key: false
project_key: ""           # e.g. ${JOB_NAME}-${BUILD_NUMBER}
prepend_parent_project_key: false
disable_inprogress_notification: false
consider_unstable_as_success: false
only_report_success: false

# proxy:
#   url: http://proxy.example.com:3128
#   username: ""
#   password: ""
#   no_proxy:
#     - "*.internal.example.com"

jobs: {}
#   my-app:
#     entity_id: SERVICE-0123456789ABCDEF
#     include_build_number_in_key: true
"""

DEFAULT_LOCAL_CONFIG_TEMPLATE = """\
# .dtnotify/local.config.yaml — personal overrides (DO NOT commit)
# credentials:
#   dt-api-token:
#     secret: dt0c01.xxx
#   client-cert:
#     certificate: /path/to/client.pem
#     key: /path/to/client.key
"""

GITIGNORE_ENTRIES = [
    ".dtnotify/local.config.yaml",
]

_SECRET_KEYS = ("secret", "token", "password")


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def _get_project_root() -> Path:
    return Path.cwd()


def _mask(value) -> str:
    text = str(value)
    return text[:4] + "..." if text else text


def _parse_result(value: str | None):
    from .models import BuildResult

    if value is None or not value.strip():
        return None
    try:
        return BuildResult(value.strip().upper())
    except ValueError:
        choices = ", ".join(r.value for r in BuildResult)
        raise typer.BadParameter(f"'{value}' is not one of {choices}", param_hint="--result")


def _parse_env(pairs: list[str] | None) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"expected NAME=VALUE, got '{pair}'", param_hint="--env")
        env[name] = value
    return env


def _snapshot(job, number, display_name, description, parent, root_url, url, result, env):
    from .models import BuildSnapshot

    return BuildSnapshot(
        job_name=job,
        number=number,
        display_name=display_name or "",
        result=_parse_result(result),
        description=description,
        parent_job_name=parent,
        root_url=root_url,
        url=url,
        env=_parse_env(env),
    )


def _load_config():
    """Config for the utility commands; a bad config file exits 1."""
    from .config import ConfigError, load_config

    try:
        return load_config(_get_project_root())
    except ConfigError as exc:
        typer.echo(f"  ✗ {exc}", err=True)
        raise typer.Exit(1)


def _notifier(job: str):
    """Notifier for the build hooks, or None when the config cannot be read."""
    from .config import ConfigError, load_config
    from .notifier import Notifier

    try:
        config = load_config(_get_project_root())
    except ConfigError as exc:
        logger.error("Cannot notify server! (%s)", exc)
        return None
    return Notifier(config.settings_for(job), config.credentials_for(job))

JOB = typer.Option(..., "--job", envvar="JOB_NAME", help="Job name")
NUMBER = typer.Option(..., "--number", envvar="BUILD_NUMBER", help="Build number")
DISPLAY_NAME = typer.Option(None, "--display-name", envvar="BUILD_DISPLAY_NAME", help="Build display name")
DESCRIPTION = typer.Option(None, "--description", help="Build description")
PARENT = typer.Option(None, "--parent", help="Full name of the folder containing the job")
ROOT_URL = typer.Option(None, "--root-url", envvar="JENKINS_URL", help="CI root URL")
URL = typer.Option(None, "--url", envvar="BUILD_URL", help="URL of this run")
RESULT = typer.Option(None, "--result", help="SUCCESS, UNSTABLE, FAILURE, ABORTED or NOT_BUILT")
ENV = typer.Option(None, "--env", help="Extra macro variable, NAME=VALUE (repeatable)")
WORKSPACE = typer.Option(None, "--workspace", envvar="WORKSPACE", help="Build workspace")


# -------------------------------------------------------------------
# Commands
# -------------------------------------------------------------------

@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
    )


@app.command()
def init():
    """Initialize dtnotify in the current project."""
    root = _get_project_root()

    config_dir = root / ".dtnotify"
    config_dir.mkdir(exist_ok=True)

    config_path = config_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text(DEFAULT_CONFIG_TEMPLATE)
        typer.echo(f"  Created {config_path.relative_to(root)}")
    else:
        typer.echo(f"  Exists  {config_path.relative_to(root)}")

    local_path = config_dir / "local.config.yaml"
    if not local_path.exists():
        local_path.write_text(DEFAULT_LOCAL_CONFIG_TEMPLATE)
        typer.echo(f"  Created {local_path.relative_to(root)}")

    gitignore_path = root / ".gitignore"
    existing = gitignore_path.read_text() if gitignore_path.exists() else ""
    additions = [e for e in GITIGNORE_ENTRIES if e not in existing]
    if additions:
        with open(gitignore_path, "a") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            f.write("# dtnotify\n")
            for entry in additions:
                f.write(f"{entry}\n")
        typer.echo("  Updated .gitignore")

    typer.echo("\n  dtnotify initialized. Run `dtnotify check --job <name>` to validate.")


@app.command("config")
def config_show():
    """Show merged configuration, secrets masked."""
    from dataclasses import asdict

    import yaml

    config = _load_config()
    data = asdict(config)

    stores = [data.get("credentials", {})]
    stores += [job.get("credentials", {}) for job in data.get("jobs", {}).values()]
    for store in stores:
        for cred_id, entry in store.items():
            if isinstance(entry, dict):
                for k in _SECRET_KEYS:
                    if entry.get(k):
                        entry[k] = _mask(entry[k])
            elif entry:
                store[cred_id] = _mask(entry)
    data["proxy"]["no_proxy"] = list(data["proxy"]["no_proxy"])
    if data["proxy"].get("password"):
        data["proxy"]["password"] = _mask(data["proxy"]["password"])

    typer.echo("\n  dtnotify — Merged Configuration")
    typer.echo("  " + "─" * 40)
    typer.echo(yaml.dump(data, default_flow_style=False, allow_unicode=True))


@app.command()
def check(job: str = JOB):
    """Validate the effective settings for a job."""
    from .config import validate_settings

    config = _load_config()
    errors = validate_settings(config.settings_for(job))
    if errors:
        for e in errors:
            typer.echo(f"  ✗ {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"  ✓ {job}: configuration OK")


@app.command()
def key(
    job: str = JOB,
    number: int = NUMBER,
    parent: str = PARENT,
    root_url: str = ROOT_URL,
    env: list[str] = ENV,
    workspace: Path = WORKSPACE,
):
    """Print the build key that would be reported."""
    from .keys import build_key
    from .notifier import Notifier

    build = _snapshot(job, number, None, None, parent, root_url, None, None, env)
    loaded = _load_config()
    notifier = Notifier(loaded.settings_for(job), loaded.credentials_for(job))
    config = notifier.settings.resolve()
    effective_root = build.root_url or config.root_url
    if not effective_root:
        typer.echo("  CI root URL not configured (--root-url / JENKINS_URL)", err=True)
        raise typer.Exit(1)
    typer.echo(build_key(build, config, effective_root, notifier.expander, workspace))


@app.command()
def start(
    job: str = JOB,
    number: int = NUMBER,
    display_name: str = DISPLAY_NAME,
    description: str = DESCRIPTION,
    parent: str = PARENT,
    root_url: str = ROOT_URL,
    url: str = URL,
    env: list[str] = ENV,
    workspace: Path = WORKSPACE,
):
    """Before-build hook: report the build as in progress."""
    build = _snapshot(job, number, display_name, description, parent, root_url, url, None, env)
    notifier = _notifier(job)
    if notifier is not None and not notifier.before_build(build, workspace):
        raise typer.Exit(1)


@app.command()
def finish(
    job: str = JOB,
    number: int = NUMBER,
    display_name: str = DISPLAY_NAME,
    description: str = DESCRIPTION,
    parent: str = PARENT,
    root_url: str = ROOT_URL,
    url: str = URL,
    result: str = RESULT,
    env: list[str] = ENV,
    workspace: Path = WORKSPACE,
):
    """After-build hook: report the build's terminal state."""
    build = _snapshot(job, number, display_name, description, parent, root_url, url, result, env)
    notifier = _notifier(job)
    if notifier is not None:
        notifier.after_build(build, workspace)


@app.command()
def perform(
    job: str = JOB,
    number: int = NUMBER,
    display_name: str = DISPLAY_NAME,
    description: str = DESCRIPTION,
    parent: str = PARENT,
    root_url: str = ROOT_URL,
    url: str = URL,
    result: str = RESULT,
    env: list[str] = ENV,
    workspace: Path = WORKSPACE,
):
    """Pipeline step: report the current state; exits 1 if the step fails."""
    build = _snapshot(job, number, display_name, description, parent, root_url, url, result, env)
    notifier = _notifier(job)
    if notifier is not None and not notifier.perform(build, workspace):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
