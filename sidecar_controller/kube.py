"""
Kubernetes client bootstrap.

Credentials are loaded into a private Configuration object rather than the
client library's global default, and two ApiClients are built from it: one
for REST calls (list, watch, read) and one reserved for exec streams.
"""

import logging
from dataclasses import dataclass

import yaml
from kubernetes import client, config
from kubernetes.client import ApiClient, CoreV1Api

from .errors import StartupError

logger = logging.getLogger(__name__)


@dataclass
class KubeClients:
    rest: ApiClient
    stream: ApiClient

    @property
    def core_api(self) -> CoreV1Api:
        return CoreV1Api(api_client=self.rest)

    @property
    def stream_core_api(self) -> CoreV1Api:
        return CoreV1Api(api_client=self.stream)

    def close(self) -> None:
        self.rest.close()
        self.stream.close()


def load_configuration(kubeconfig: str | None) -> client.Configuration:
    """
    Load cluster credentials.

    Args:
        kubeconfig: Path to a kubeconfig file, or None for in-cluster config

    Raises:
        StartupError: If the credentials cannot be loaded
    """
    configuration = client.Configuration()
    try:
        if kubeconfig:
            config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
            logger.info(f"Loaded kubeconfig from {kubeconfig}")
        else:
            config.load_incluster_config(client_configuration=configuration)
            logger.info("Loaded in-cluster Kubernetes configuration")
    except (config.ConfigException, OSError, yaml.YAMLError) as e:
        raise StartupError(f"Failed to load Kubernetes configuration: {e}") from e
    return configuration


def build_api_clients(kubeconfig: str | None) -> KubeClients:
    """Build the REST and streaming clients from the given credentials."""
    configuration = load_configuration(kubeconfig)
    return KubeClients(
        rest=ApiClient(configuration=configuration),
        stream=ApiClient(configuration=configuration),
    )


def verify_connection(api_client: ApiClient) -> str:
    """
    Check that the API server is reachable with the loaded credentials.

    Returns:
        The server's git version

    Raises:
        StartupError: If the version endpoint cannot be reached
    """
    try:
        version = client.VersionApi(api_client=api_client).get_code()
    except Exception as e:
        raise StartupError(f"Kubernetes API server is unreachable: {e}") from e
    logger.info(f"Connected to Kubernetes {version.git_version}")
    return version.git_version
