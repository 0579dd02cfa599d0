"""
Invoke tasks for Power Watch.
Run `invoke --list` to see all available tasks.
"""

import base64
import json
import shutil
import sys
from pathlib import Path

from invoke import task

# Project root directory
PROJECT_ROOT = Path(__file__).parent
VENV_PYTHON = PROJECT_ROOT / ".venv" / "bin" / "python"
TARGETS = "src/ tests/ scripts/ tasks.py"


def get_venv_python():
    """Get path to venv Python, with fallback."""
    if VENV_PYTHON.exists():
        return str(VENV_PYTHON)
    return sys.executable


def run_cmd(ctx, cmd, **kwargs):
    """Run a command with proper error handling."""
    return ctx.run(cmd, pty=True, **kwargs)


def _aws_config():
    sys.path.insert(0, str(PROJECT_ROOT / "src"))
    from power_watch.config_loader import get_aws_config

    return get_aws_config()


def _function_name():
    return f"{_aws_config()['stack_name']}-power-watch"


# =============================================================================
# Setup Tasks
# =============================================================================


@task
def install(ctx):
    """Install the package with development dependencies."""
    print("📦 Installing development dependencies...")
    run_cmd(ctx, "uv pip install -e '.[dev]'")
    print("✅ Dependencies installed")


@task
def venv(ctx):
    """Create Python virtual environment."""
    if (PROJECT_ROOT / ".venv").exists():
        print("⚠️  Virtual environment already exists at .venv/")
        print("   To recreate, first run: invoke venv-clean")
    else:
        print("🐍 Creating virtual environment...")
        run_cmd(ctx, "uv venv --python 3.11 .venv")
        print("✅ Virtual environment created")
    print()
    print("To activate, run:")
    print("  source .venv/bin/activate")


@task
def install_hooks(ctx):
    """Install the git pre-commit hook (scripts/pre_commit.py)."""
    hook = PROJECT_ROOT / ".git" / "hooks" / "pre-commit"
    if not hook.parent.exists():
        print("⚠️  Not a git repository")
        return
    hook.write_text(f"#!/bin/sh\nexec {get_venv_python()} scripts/pre_commit.py\n")
    hook.chmod(0o755)
    print(f"✅ Installed {hook.relative_to(PROJECT_ROOT)}")


@task
def venv_clean(ctx):
    """Remove virtual environment."""
    venv_path = PROJECT_ROOT / ".venv"
    if venv_path.exists():
        print("🗑️  Removing virtual environment...")
        shutil.rmtree(venv_path)
        print("✅ Virtual environment removed")
    else:
        print("ℹ️  No virtual environment found")


# =============================================================================
# Code Quality Tasks
# =============================================================================


@task
def format(ctx, files=""):
    """
    Format code with ruff.

    Examples:
        invoke format                                # Format all code
        invoke format --files src/power_watch/app.py # Format specific file
    """
    targets = files or TARGETS
    print(f"✨ Formatting: {targets}")
    run_cmd(ctx, f"ruff format {targets}")
    run_cmd(ctx, f"ruff check --fix --select I {targets}")  # Also fix import sorting


@task
def lint(ctx, files=""):
    """Run linter (ruff)."""
    targets = files or TARGETS
    print(f"🔍 Linting: {targets}")
    run_cmd(ctx, f"ruff check {targets}")


@task
def lint_fix(ctx, files=""):
    """Run linter and fix issues."""
    targets = files or TARGETS
    print(f"🔧 Fixing: {targets}")
    run_cmd(ctx, f"ruff check --fix {targets}")


@task
def typecheck(ctx):
    """Run type checker (mypy)."""
    print("🔍 Running type checker...")
    run_cmd(ctx, "mypy src/power_watch")


# =============================================================================
# Local Testing Tasks
# =============================================================================


@task
def test(ctx):
    """Run unit tests."""
    print("🧪 Running unit tests...")
    run_cmd(ctx, "pytest tests/ -v")


@task
def test_cov(ctx):
    """Run unit tests with coverage."""
    print("🧪 Running unit tests with coverage...")
    run_cmd(ctx, "pytest tests/ -v --cov=power_watch --cov-report=term-missing")


@task
def check(ctx):
    """Run all checks (lint + typecheck + test)."""
    print("🔍 Running all checks...")
    lint(ctx)
    typecheck(ctx)
    test(ctx)
    print("✅ All checks passed")


@task
def test_telegram(ctx):
    """Send a test notification to the admin chat."""
    python = get_venv_python()
    run_cmd(ctx, f"{python} scripts/test_local.py --test-telegram")


@task
def outage(ctx, city, street, house=""):
    """
    Query the DTEK outage source for an address.

    Example:
        invoke outage --city "м. Одеса" --street "вул. Дерибасівська" --house 12
    """
    python = get_venv_python()
    run_cmd(ctx, f'{python} scripts/test_local.py --outage "{city}" "{street}" "{house}"')


@task
def evaluate(ctx):
    """Run a single evaluation pass locally against the configured table."""
    python = get_venv_python()
    run_cmd(ctx, f"{python} scripts/test_local.py --pass")


@task
def serve(ctx):
    """Run the evaluation scheduler locally until Ctrl+C."""
    python = get_venv_python()
    run_cmd(ctx, f"{python} scripts/test_local.py --serve")


# =============================================================================
# Build & Deploy Tasks
# =============================================================================


@task
def init(ctx):
    """Generate SAM configuration from config.yaml."""
    python = get_venv_python()
    run_cmd(ctx, f"{python} scripts/deploy.py --init")


@task
def show_config(ctx):
    """Show deployment configuration."""
    python = get_venv_python()
    run_cmd(ctx, f"{python} scripts/deploy.py --show")


@task
def validate(ctx):
    """Validate SAM template."""
    print("🔍 Validating SAM template...")
    run_cmd(ctx, "sam validate")


@task
def build(ctx):
    """Build SAM application."""
    print("🔨 Building SAM application...")
    run_cmd(ctx, "sam build")


@task(pre=[init, build])
def deploy(ctx):
    """Regenerate config, build, and deploy to AWS (auto-confirm)."""
    print("🚀 Deploying to AWS...")
    run_cmd(ctx, "sam deploy --no-confirm-changeset")


@task(pre=[init, build])
def deploy_guided(ctx):
    """Regenerate config, build, and deploy with guided prompts."""
    print("🚀 Deploying to AWS (guided)...")
    run_cmd(ctx, "sam deploy --guided")


# =============================================================================
# AWS Operations Tasks
# =============================================================================


@task
def logs(ctx, tail=False, start_time="", end_time="", filter=""):
    """
    View Lambda function logs.

    Examples:
        invoke logs --tail
        invoke logs --start-time "2 hours ago"
        invoke logs --start-time "1 hour ago" --filter "state_transition"
    """
    stack_name = _aws_config()["stack_name"]
    cmd = f"sam logs -n PowerWatchFunction --stack-name {stack_name}"

    if tail:
        cmd += " --tail"
        print(f"📋 Tailing logs for {stack_name} (Ctrl+C to exit)...")
    else:
        if start_time:
            cmd += f" --start-time '{start_time}'"
        if end_time:
            cmd += f" --end-time '{end_time}'"
        print(f"📋 Fetching logs for {stack_name}...")

    if filter:
        cmd += f" 2>&1 | grep -A 10 '{filter}'"

    run_cmd(ctx, cmd)


@task
def check_state(ctx, chat_id):
    """Show one subscriber record from DynamoDB."""
    table_name = _aws_config()["table_name"]

    print(f"📊 Subscriber {chat_id} in DynamoDB table: {table_name}")
    key = json.dumps({"pk": {"S": str(chat_id)}})
    result = ctx.run(
        f"aws dynamodb get-item --table-name {table_name} --key '{key}' --output json",
        hide=True,
        warn=True,
    )
    if result.ok and result.stdout.strip():
        print(json.dumps(json.loads(result.stdout), indent=2, ensure_ascii=False))
    else:
        print("ℹ️  No record found (table may be empty or not exist yet)")


def _invoke_remote(ctx, payload: bytes):
    function_name = _function_name()
    print(f"⚡ Invoking Lambda function: {function_name}")
    # Base64 payload avoids shell escaping issues
    encoded = base64.b64encode(payload).decode()
    run_cmd(
        ctx,
        f"aws lambda invoke --function-name {function_name} --payload '{encoded}' "
        "--cli-binary-format base64 response.json",
    )
    print()
    print("📄 Response:")
    run_cmd(ctx, "cat response.json && echo")


@task
def invoke_remote(ctx):
    """Run one evaluation pass on the deployed Lambda."""
    _invoke_remote(ctx, b'{"action": "evaluate"}')


@task
def test_remote(ctx):
    """Send a test notification from the deployed Lambda."""
    _invoke_remote(ctx, b'{"test": true}')


@task
def invoke_local(ctx):
    """Invoke Lambda function locally (requires Docker)."""
    print("⚡ Invoking Lambda function locally...")
    build(ctx)
    run_cmd(ctx, "sam local invoke PowerWatchFunction --event events/test-event.json")


# =============================================================================
# Cleanup Tasks
# =============================================================================


@task
def clean(ctx):
    """Remove build artifacts."""
    print("🧹 Cleaning build artifacts...")

    aws_sam = PROJECT_ROOT / ".aws-sam"
    if aws_sam.exists():
        shutil.rmtree(aws_sam)
        print("   Removed .aws-sam/")

    for pycache in PROJECT_ROOT.rglob("__pycache__"):
        shutil.rmtree(pycache)
        print(f"   Removed {pycache.relative_to(PROJECT_ROOT)}/")

    response_json = PROJECT_ROOT / "response.json"
    if response_json.exists():
        response_json.unlink()
        print("   Removed response.json")

    print("✅ Clean complete")


@task
def clean_all(ctx):
    """Remove all generated files (build artifacts + config)."""
    clean(ctx)

    for filename in ["samconfig.toml", "env.json"]:
        filepath = PROJECT_ROOT / filename
        if filepath.exists():
            filepath.unlink()
            print(f"   Removed {filename}")

    print("✅ Full clean complete")


@task
def delete(ctx):
    """Delete all AWS resources (sam delete)."""
    print("🗑️  Deleting AWS resources...")
    run_cmd(ctx, "sam delete")
