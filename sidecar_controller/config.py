"""
Controller configuration.

Every setting is resolved once at startup with the same precedence:
command-line argument, then environment variable, then default. The
resulting ControllerConfig is passed explicitly to whatever needs it.
"""

import argparse
import logging
import os
from dataclasses import dataclass

from .evaluator import DEFAULT_ANNOTATION_KEY

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LOG_FORMATS = ["json", "text"]


@dataclass(frozen=True)
class ControllerConfig:
    kubeconfig: str | None = None  # None means in-cluster credentials
    annotation_key: str = DEFAULT_ANNOTATION_KEY
    namespace: str | None = None  # None means all namespaces
    workers: int = 1
    max_retries: int = 3
    exec_timeout: float = 10.0
    sync_timeout: float = 60.0
    health_port: int = 8080  # 0 disables the health server
    log_level: str = "INFO"
    log_format: str = "json"


def resolve_kubeconfig(flag_value: str | None) -> str | None:
    """
    Resolve the path of the kubeconfig file.

    Priority (highest to lowest):
    1. Command line argument (--kubeconfig)
    2. Environment variable (KUBECONFIG)
    3. None, meaning the in-cluster service account is used

    Args:
        flag_value: Value given on the command line, if any

    Returns:
        Path with "~" expanded to the home directory, or None
    """
    path = flag_value or os.environ.get("KUBECONFIG", "")
    if not path:
        return None
    return os.path.expanduser(path)


def _positive_number(
    name: str, cli_value: float | int | None, env: str, default, cast=float
):
    """Pick a positive number from the CLI or the environment, warning on bad values."""
    if cli_value is not None:
        if cli_value <= 0:
            logger.warning(f"Invalid {name}={cli_value}, using default {default}")
            return default
        return cli_value

    raw = os.environ.get(env)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {env}={raw}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Invalid {env}={value}, using default {default}")
        return default
    return value


def _choice(cli_value: str | None, env: str, default: str, choices: list[str]) -> str:
    if cli_value is not None:
        return cli_value
    raw = os.environ.get(env)
    if raw is None:
        return default
    if raw.upper() in choices:
        return raw.upper()
    if raw.lower() in choices:
        return raw.lower()
    logger.warning(f"Invalid {env}={raw}, using default {default}")
    return default


def _health_port(cli_value: int | None) -> int:
    if cli_value is not None:
        return cli_value
    raw = os.environ.get("SIDECAR_HEALTH_PORT")
    if raw is None:
        return 8080
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid SIDECAR_HEALTH_PORT={raw}, using default 8080")
        return 8080


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sidecar-controller",
        description="Sidecar controller - stops sidecar containers once a pod's primary containers finish",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  KUBECONFIG               Path to kubeconfig (default: in-cluster config)
  SIDECAR_ANNOTATION_KEY   Annotation listing sidecars (default: limgit/sidecars)
  SIDECAR_NAMESPACE        Namespace to watch (default: all namespaces)
  SIDECAR_WORKERS          Number of reconcile workers (default: 1)
  SIDECAR_MAX_RETRIES      Requeues per failing pod (default: 3)
  SIDECAR_EXEC_TIMEOUT     Seconds to wait for a kill command (default: 10.0)
  SIDECAR_SYNC_TIMEOUT     Seconds to wait for the initial pod list (default: 60.0)
  SIDECAR_HEALTH_PORT      Port of the health endpoints, 0 disables (default: 8080)
  SIDECAR_LOG_LEVEL        Logging level (default: INFO)
  SIDECAR_LOG_FORMAT       json or text (default: json)

Note: Command-line arguments override environment variables.

Examples:
  # Run inside the cluster with default settings
  sidecar-controller

  # Run against a local cluster with readable logs
  sidecar-controller --kubeconfig ~/.kube/config --log-format text --log-level DEBUG
        """,
    )

    parser.add_argument("--kubeconfig", type=str, default=None, help="Path to kubeconfig file")
    parser.add_argument(
        "--annotation-key",
        type=str,
        default=None,
        help="Pod annotation listing sidecar containers (comma-separated)",
    )
    parser.add_argument("--namespace", type=str, default=None, help="Namespace to watch")
    parser.add_argument("--workers", type=int, default=None, help="Number of reconcile workers")
    parser.add_argument(
        "--max-retries", type=int, default=None, help="Requeues per failing pod before giving up"
    )
    parser.add_argument(
        "--exec-timeout", type=float, default=None, help="Seconds to wait for a kill command"
    )
    parser.add_argument(
        "--sync-timeout", type=float, default=None, help="Seconds to wait for the initial pod list"
    )
    parser.add_argument(
        "--health-port", type=int, default=None, help="Port of the health endpoints (0 disables)"
    )
    parser.add_argument("--log-level", type=str, default=None, choices=LOG_LEVELS)
    parser.add_argument("--log-format", type=str, default=None, choices=LOG_FORMATS)
    return parser


def load_config(args: argparse.Namespace) -> ControllerConfig:
    """
    Build the controller configuration from parsed arguments and the environment.

    Args:
        args: Parsed command-line arguments

    Returns:
        Fully resolved ControllerConfig
    """
    annotation_key = args.annotation_key or os.environ.get(
        "SIDECAR_ANNOTATION_KEY", DEFAULT_ANNOTATION_KEY
    )
    namespace = args.namespace or os.environ.get("SIDECAR_NAMESPACE") or None

    return ControllerConfig(
        kubeconfig=resolve_kubeconfig(args.kubeconfig),
        annotation_key=annotation_key,
        namespace=namespace,
        workers=_positive_number("workers", args.workers, "SIDECAR_WORKERS", 1, int),
        max_retries=_positive_number(
            "max-retries", args.max_retries, "SIDECAR_MAX_RETRIES", 3, int
        ),
        exec_timeout=_positive_number(
            "exec-timeout", args.exec_timeout, "SIDECAR_EXEC_TIMEOUT", 10.0
        ),
        sync_timeout=_positive_number(
            "sync-timeout", args.sync_timeout, "SIDECAR_SYNC_TIMEOUT", 60.0
        ),
        health_port=_health_port(args.health_port),
        log_level=_choice(args.log_level, "SIDECAR_LOG_LEVEL", "INFO", LOG_LEVELS),
        log_format=_choice(args.log_format, "SIDECAR_LOG_FORMAT", "json", LOG_FORMATS),
    )
