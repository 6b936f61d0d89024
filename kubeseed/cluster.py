"""Cluster topology classification.

Turns the declared node list into the per-role configuration payloads
written into the image: one config for servers joining an existing control
plane, one for the server initialising the cluster, and one for agents.
"""
import copy
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from .errors import ConfigurationError
from .models import Distribution, KubernetesDefinition, Node, NodeType
from .utils import read_yaml_file

logger = logging.getLogger("kubeseed.cluster")

SERVER_CONFIG_FILE = "server.yaml"
AGENT_CONFIG_FILE = "agent.yaml"

TOKEN_KEY = "token"
SERVER_KEY = "server"
CNI_KEY = "cni"
TLS_SAN_KEY = "tls-san"
DISABLE_KEY = "disable"
CLUSTER_INIT_KEY = "cluster-init"

CNI_DEFAULT = "cilium"
CNI_MULTUS = "multus"

RKE2_SERVER_PORT = 9345
K3S_SERVER_PORT = 6443


@dataclass
class Cluster:
    """Per-role configuration computed for a cluster definition.

    ``initialiser_config`` is only set for multi-node clusters and
    ``agent_config`` only when at least one agent is declared.
    """
    server_config: Dict[str, Any]
    initialiser_name: str = ""
    initialiser_config: Optional[Dict[str, Any]] = None
    agent_config: Optional[Dict[str, Any]] = None

    def extract_cni(self) -> Tuple[str, bool]:
        """Return the configured CNI and whether Multus is layered on top.

        Returns:
            tuple: (cni, multus_enabled)

        Raises:
            ConfigurationError: If the CNI setting is missing or unusable
        """
        configured = self.server_config.get(CNI_KEY)

        if isinstance(configured, str):
            if not configured:
                raise ConfigurationError("cni not configured")
            return configured, False

        if isinstance(configured, list):
            if len(configured) == 1:
                return str(configured[0]), False
            if len(configured) == 2:
                if configured[0] != CNI_MULTUS:
                    raise ConfigurationError(
                        f"multiple CNI plugins without multus are not supported: {configured}"
                    )
                return str(configured[1]), True
            raise ConfigurationError(f"invalid cni value: {configured}")

        raise ConfigurationError(f"invalid cni: {configured!r}")


def servers_count(nodes: Iterable[Node]) -> int:
    """Count nodes declared with the server role."""
    return sum(1 for n in nodes if n.type == NodeType.SERVER)


def find_initialiser(nodes: Iterable[Node]) -> str:
    """Return the hostname of the node that initialises the cluster.

    The node explicitly flagged as initialiser wins; otherwise the first
    declared server is chosen.

    Raises:
        ConfigurationError: If no server node is declared
    """
    nodes = list(nodes)
    flagged = [n for n in nodes if n.initialiser]
    if len(flagged) > 1:
        raise ConfigurationError("only one node can be specified as an initialiser")
    if flagged:
        if flagged[0].type != NodeType.SERVER:
            raise ConfigurationError(f"initialiser node '{flagged[0].hostname}' must be a server")
        return flagged[0].hostname

    for node in nodes:
        if node.type == NodeType.SERVER:
            return node.hostname

    raise ConfigurationError("cluster does not contain any server nodes")


def load_kubernetes_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a user-supplied distribution config, empty if the file is absent.

    Raises:
        ConfigurationError: If the file exists but is not a YAML mapping
    """
    path = Path(path)
    if not path.exists():
        return {}

    try:
        config = read_yaml_file(path)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"parsing kubernetes config {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"kubernetes config {path} must be a mapping")
    return config


def new_cluster(kubernetes: KubernetesDefinition, config_path: Union[str, Path]) -> Cluster:
    """Compute the per-role configuration for *kubernetes*.

    Args:
        kubernetes: The Kubernetes section of the image definition
        config_path: Directory holding optional user ``server.yaml``/``agent.yaml``

    Returns:
        Cluster: The computed configuration

    Raises:
        ConfigurationError: If the definition cannot be turned into a valid config
    """
    config_path = Path(config_path)
    distribution = kubernetes.distribution
    network = kubernetes.network

    server_config = load_kubernetes_config(config_path / SERVER_CONFIG_FILE)

    if network.api_host:
        _append_list_value(server_config, TLS_SAN_KEY, network.api_host)

    if distribution == Distribution.RKE2:
        if network.api_vip:
            _append_list_value(server_config, TLS_SAN_KEY, network.api_vip)
        server_config.setdefault(CNI_KEY, CNI_DEFAULT)
    elif network.api_vip:
        # The VIP is served by a load balancer service; k3s' own would fight over it.
        _append_list_value(server_config, DISABLE_KEY, "servicelb")

    if kubernetes.single_node:
        logger.debug("Single node cluster requested")
        return Cluster(server_config=server_config)

    if not network.api_vip:
        raise ConfigurationError("a virtual IP address is required for multi-node clusters")

    initialiser = find_initialiser(kubernetes.nodes)
    logger.info(f"Node '{initialiser}' will initialise the cluster")

    if not server_config.get(TOKEN_KEY):
        server_config[TOKEN_KEY] = str(uuid.uuid4())

    port = RKE2_SERVER_PORT if distribution == Distribution.RKE2 else K3S_SERVER_PORT
    server_config[SERVER_KEY] = f"https://{network.api_vip}:{port}"

    initialiser_config = copy.deepcopy(server_config)
    del initialiser_config[SERVER_KEY]
    if distribution == Distribution.K3S:
        initialiser_config[CLUSTER_INIT_KEY] = True

    agent_config = None
    if any(n.type == NodeType.AGENT for n in kubernetes.nodes):
        agent_config = load_kubernetes_config(config_path / AGENT_CONFIG_FILE)
        agent_config[TOKEN_KEY] = server_config[TOKEN_KEY]
        agent_config[SERVER_KEY] = server_config[SERVER_KEY]

    return Cluster(
        server_config=server_config,
        initialiser_name=initialiser,
        initialiser_config=initialiser_config,
        agent_config=agent_config,
    )


def _append_list_value(config: Dict[str, Any], key: str, value: str) -> None:
    existing = config.get(key)
    if existing is None:
        values: List[Any] = []
    elif isinstance(existing, list):
        values = existing
    else:
        values = [existing]

    if value not in values:
        values.append(value)
    config[key] = values
