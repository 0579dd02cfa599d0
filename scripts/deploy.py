#!/usr/bin/env python3
"""
Deployment helper script for Power Watch.
Reads config.yaml and generates SAM deployment files.

Usage:
    python scripts/deploy.py --init      # Create samconfig.toml and env.json from config.yaml
    python scripts/deploy.py --deploy    # Build and deploy
    python scripts/deploy.py --show      # Show deployment parameters
"""

import argparse
import json
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from power_watch.config_loader import TIMING_ENV_VARS, get_aws_config, load_yaml_config  # noqa: E402

FUNCTION_NAME = "PowerWatchFunction"


def _device_string(devices: Any) -> str:
    """Render the YAML device map as the TUYA_DEVICES env format."""
    if not devices:
        return ""
    return ",".join(f"{chat_id}:{device_id}" for chat_id, device_id in devices.items())


def build_environment(cfg: Dict[str, Any]) -> Dict[str, str]:
    """Map config.yaml onto the Lambda environment variables read by load_config()."""
    telegram = cfg["telegram"]
    tuya = cfg.get("tuya") or {}
    outage = cfg.get("outage_source") or {}
    settings = cfg.get("settings") or {}

    env = {
        "TG_BOT_TOKEN": telegram["bot_token"],
        "TG_ADMIN_CHAT_ID": str(telegram.get("admin_chat_id") or ""),
        "DDB_TABLE": (cfg.get("aws") or {}).get("table_name", "power_watch_subscribers"),
        "TIMEZONE": settings.get("timezone", "Europe/Kyiv"),
        "CITIES": ",".join(settings.get("cities") or []),
        "OUTAGE_SOURCE_URL": outage.get("url", ""),
        "OUTAGE_SOURCE_CSRF_TOKEN": outage.get("csrf_token", ""),
        "OUTAGE_SOURCE_COOKIE": outage.get("cookie", ""),
    }
    if tuya.get("access_id"):
        env.update(
            {
                "TUYA_ENDPOINT": tuya["endpoint"],
                "TUYA_ACCESS_ID": tuya["access_id"],
                "TUYA_ACCESS_KEY": tuya["access_key"],
                "TUYA_DEVICES": _device_string(tuya.get("devices")),
            }
        )
    for var, name in TIMING_ENV_VARS.items():
        if settings.get(name) is not None:
            env[var] = str(settings[name])

    return {k: v for k, v in env.items() if v != ""}


def generate_samconfig(config_path: Optional[str] = None) -> str:
    """Generate samconfig.toml from config.yaml."""
    cfg = load_yaml_config(config_path)
    aws_cfg = get_aws_config(config_path)
    env = build_environment(cfg)

    # CloudFormation parameter names are the env var names in CamelCase
    params = [
        f"{''.join(part.capitalize() for part in name.lower().split('_'))}='{value}'"
        for name, value in env.items()
    ]
    param_overrides = " ".join(params)

    return f'''# Auto-generated from config.yaml
# Run: python scripts/deploy.py --init

version = 0.1

[default.deploy.parameters]
stack_name = "{aws_cfg['stack_name']}"
region = "{aws_cfg['region']}"
confirm_changeset = true
capabilities = "CAPABILITY_IAM"
disable_rollback = false
resolve_s3 = true
parameter_overrides = "{param_overrides}"
image_repositories = []

[default.build.parameters]
parallel = true
cached = true

[default.local_invoke.parameters]
env_vars = "env.json"
'''


def create_env_json(config_path: Optional[str] = None) -> str:
    """Create env.json for SAM local invoke."""
    cfg = load_yaml_config(config_path)
    return json.dumps({FUNCTION_NAME: build_environment(cfg)}, indent=2, ensure_ascii=False)


def main():
    parser = argparse.ArgumentParser(description="Deploy Power Watch")
    parser.add_argument("--init", action="store_true", help="Generate samconfig.toml from config.yaml")
    parser.add_argument("--deploy", action="store_true", help="Build and deploy")
    parser.add_argument("--show", action="store_true", help="Show deployment parameters")
    parser.add_argument("--config", type=str, help="Path to config.yaml", default=None)

    args = parser.parse_args()

    if not any([args.init, args.deploy, args.show]):
        parser.print_help()
        sys.exit(1)

    project_root = Path(__file__).parent.parent

    try:
        if args.show:
            cfg = load_yaml_config(args.config)
            aws_cfg = get_aws_config(args.config)
            tuya = cfg.get("tuya") or {}

            print("📋 Deployment Configuration:")
            print(f"   Region: {aws_cfg['region']}")
            print(f"   Stack: {aws_cfg['stack_name']}")
            print(f"   Table: {aws_cfg['table_name']}")
            print(f"   Tuya devices: {len(tuya.get('devices') or {})}")
            print(f"   Timezone: {(cfg.get('settings') or {}).get('timezone', 'Europe/Kyiv')}")
            return

        if args.init:
            samconfig_path = project_root / "samconfig.toml"
            samconfig_path.write_text(generate_samconfig(args.config), encoding="utf-8")
            print(f"✅ Created {samconfig_path}")

            env_json_path = project_root / "env.json"
            env_json_path.write_text(create_env_json(args.config), encoding="utf-8")
            print(f"✅ Created {env_json_path}")

            print()
            print("Next steps:")
            print("  1. Review samconfig.toml")
            print("  2. Run: sam build && sam deploy")
            return

        if args.deploy:
            print("🔨 Building...")
            result = subprocess.run(["sam", "build"], cwd=project_root)
            if result.returncode != 0:
                sys.exit(1)

            print()
            print("🚀 Deploying...")
            result = subprocess.run(["sam", "deploy"], cwd=project_root)
            sys.exit(result.returncode)

    except FileNotFoundError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except KeyError as e:
        print(f"❌ Missing config key: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
