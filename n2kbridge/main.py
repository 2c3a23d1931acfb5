import os
import argparse
import asyncio
import logging
from pathlib import Path
from typing import Mapping, Optional
import yaml

from n2kbridge.config import BridgeConfig, apply_env_overrides
from n2kbridge.app import BridgeApp


def _resolve_config_path(cli_path: str | None) -> Path:
    """
    Resolve config path with the following precedence:
    1) CLI: --config /path/to/config.yaml
    2) ENV: N2KBRIDGE_CONFIG=/path/to/config.yaml
    3) Default: <project_root>/config.yaml  (parent of the 'n2kbridge' package dir)
    """
    if cli_path:
        return Path(cli_path).expanduser().resolve()

    env = os.getenv("N2KBRIDGE_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    return Path(__file__).resolve().parents[1] / "config.yaml"


def load_config(path: str | Path, environ: Optional[Mapping[str, str]] = None) -> BridgeConfig:
    """Load config.yaml, apply environment overrides and validate."""
    log = logging.getLogger(__name__)
    with open(Path(path).expanduser(), "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    data = apply_env_overrides(data, dict(os.environ if environ is None else environ))
    cfg = BridgeConfig.model_validate(data)
    log.info(f"Configuration loaded from {path} ({len(cfg.sensors)} sensor entries)")
    return cfg


async def amain(cfg_path: str | Path | None) -> None:
    log = logging.getLogger(__name__)
    try:
        cfg = load_config(_resolve_config_path(str(cfg_path) if cfg_path else None))
        app = BridgeApp(cfg)
        await app.run()
    except KeyboardInterrupt:
        log.info("Bridge interrupted by user")
        raise
    except Exception as e:
        log.error(f"Fatal error in bridge: {e}", exc_info=True)
        raise


def main() -> None:
    parser = argparse.ArgumentParser(description="Signal K to Home Assistant MQTT bridge")
    parser.add_argument(
        "--config",
        help="Path to config.yaml (overrides N2KBRIDGE_CONFIG and default).",
        required=False,
    )
    args = parser.parse_args()

    asyncio.run(amain(args.config))


if __name__ == "__main__":
    main()
