# -- coding: utf-8 --

import argparse
import asyncio
import logging
import signal
import time

from backend import AttendanceApiClient, build_backend_config
from camera import create_camera_from_loaded_config
from core.config import ConfigError, load_config, validate_config
from core.runtime import build_runtime, build_runtime_config_from_loaded_config
from detect import create_detector_from_loaded_config
from trigger import build_source_config_from_loaded_config, create_source


def parse_args():
    p = argparse.ArgumentParser(
        description="Attendance kiosk: face capture and check-in/check-out service",
    )
    p.add_argument(
        "--config-dir", default="config", help="Directory containing main_*.yaml"
    )
    p.add_argument("--verbose", action="store_true", help="Debug log")
    p.add_argument(
        "--log-level", default="", help="Override log level (debug/info/warning/error)"
    )
    return p.parse_args()


def setup_logging(verbose: bool, log_level: str = ""):
    if verbose:
        level = logging.DEBUG
    else:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "warn": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(str(log_level or "").strip().lower(), logging.INFO)
    # Use UTC for all %(asctime)s timestamps in logs.
    logging.Formatter.converter = time.gmtime
    logging.basicConfig(
        level=level, format="%(asctime)sZ [%(levelname)s] %(message)s", force=True
    )
    if not verbose:
        # Silence per-request access lines from aiohttp.
        for name in ("aiohttp.access", "aiohttp.server"):
            logging.getLogger(name).setLevel(logging.WARNING)


async def serve(cfg):
    camera = create_camera_from_loaded_config(cfg)
    detector = create_detector_from_loaded_config(cfg)
    backend = AttendanceApiClient(build_backend_config(cfg.backend))
    runtime = build_runtime(
        camera,
        detector,
        backend,
        config=build_runtime_config_from_loaded_config(cfg),
    )

    sources = []
    if cfg.trigger.tcp.enabled:
        sources.append(
            create_source(
                "tcp",
                build_source_config_from_loaded_config(cfg),
                runtime.app_context.controller.on_recognition,
            )
        )
    else:
        logging.info("Passive recognizer disabled by config; manual triggers only")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runtime.request_stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl+C still raises.
            break

    await runtime.start(sources=sources)
    await runtime.run(
        runtime_limit_s=cfg.runtime.max_runtime_s
        if cfg.runtime.max_runtime_s > 0
        else None
    )


def main():
    args = parse_args()
    setup_logging(args.verbose, args.log_level)
    try:
        cfg = load_config(args.config_dir)
    except ConfigError as e:
        logging.error("Config load failed: %s", e)
        raise SystemExit(1)
    # Config-driven log level (unless overridden by CLI).
    if not args.verbose and not args.log_level:
        setup_logging(args.verbose, cfg.runtime.log_level)

    try:
        validate_config(cfg)
    except ConfigError as e:
        logging.error("Config invalid: %s", e)
        raise SystemExit(1) from e

    logging.info(
        "Starting: camera=%s backend=%s hmi=%s recognizer=%s mode=%s runtime=%s",
        cfg.camera.type,
        cfg.backend.base_url,
        f"{cfg.hmi.host}:{cfg.hmi.port}" if cfg.hmi.enabled else "off",
        f"{cfg.trigger.tcp.host}:{cfg.trigger.tcp.port}"
        if cfg.trigger.tcp.enabled
        else "off",
        cfg.auto.mode,
        f"{cfg.runtime.max_runtime_s}s" if cfg.runtime.max_runtime_s else "unlimited",
    )
    logging.info(
        "Config files: main=%s detect=%s",
        cfg.paths.get("main"),
        cfg.paths.get("detect"),
    )

    try:
        asyncio.run(serve(cfg))
        logging.info("Done")
    except ValueError as e:
        # Unknown camera/detector/source names and bad detector params.
        logging.error("Startup failed: %s", e)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        logging.info("Service STOPPED by user (Ctrl+C)")
    except Exception:
        logging.exception("Error")
        raise


if __name__ == "__main__":
    main()
