"""Image definition loading and validation.

An image definition is a YAML document; kubeseed only reads its ``image``
and ``kubernetes`` sections::

    image:
      arch: x86_64
    kubernetes:
      version: v1.30.3+rke2r1
      network:
        apiVIP: 192.168.122.100
        apiHost: api.cluster01.example.com
      nodes:
        - hostname: node-1
          type: server
          initialiser: true
        - hostname: node-2
          type: agent
"""
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from jsonschema import ValidationError, validate

from .errors import ConfigurationError
from .models import (
    SUPPORTED_ARCHITECTURES,
    Distribution,
    HelmChartDefinition,
    HelmRepository,
    ImageDefinition,
    KubernetesDefinition,
    Network,
    Node,
    NodeType,
)

logger = logging.getLogger("kubeseed.definition")

# RFC 1123 hostname; embedded unquoted in the first-boot script.
HOSTNAME_PATTERN = r"^(?=.{1,253}$)[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"

DEFINITION_SCHEMA = {
    "type": "object",
    "properties": {
        "image": {
            "type": "object",
            "properties": {
                "arch": {"type": "string"},
            },
        },
        "kubernetes": {
            "type": "object",
            "properties": {
                "version": {"type": "string"},
                "network": {
                    "type": "object",
                    "properties": {
                        "apiVIP": {"type": "string"},
                        "apiHost": {"type": "string"},
                    },
                },
                "nodes": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "hostname": {"type": "string", "pattern": HOSTNAME_PATTERN},
                            "type": {"type": "string"},
                            "initialiser": {"type": "boolean"},
                        },
                        "required": ["hostname", "type"],
                    },
                },
                "manifests": {
                    "type": "object",
                    "properties": {
                        "urls": {"type": "array", "items": {"type": "string"}},
                    },
                },
                "helm": {
                    "type": "object",
                    "properties": {
                        "charts": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "name": {"type": "string"},
                                    "repositoryName": {"type": "string"},
                                    "version": {"type": "string"},
                                    "targetNamespace": {"type": "string"},
                                    "createNamespace": {"type": "boolean"},
                                    "installationNamespace": {"type": "string"},
                                    "valuesFile": {"type": "string"},
                                },
                                "required": ["name", "repositoryName", "version"],
                            },
                        },
                        "repositories": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "name": {"type": "string"},
                                    "url": {"type": "string"},
                                },
                                "required": ["name", "url"],
                            },
                        },
                    },
                },
                "registryMirrors": {
                    "type": "object",
                    "additionalProperties": {
                        "type": "array",
                        "items": {"type": "string"},
                    },
                },
            },
        },
    },
}


def load_definition(path: Union[str, Path]) -> ImageDefinition:
    """Load, validate and convert an image definition file.

    Args:
        path: Path to the YAML image definition

    Returns:
        ImageDefinition: The parsed definition

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"reading image definition {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"parsing image definition {path}: {e}") from e

    logger.debug(f"Loaded image definition from {path}")
    return parse_definition(data)


def parse_definition(data: Dict[str, Any]) -> ImageDefinition:
    """Convert raw definition data into an :class:`ImageDefinition`.

    Raises:
        ConfigurationError: If the data fails schema or semantic validation
    """
    try:
        validate(instance=data, schema=DEFINITION_SCHEMA)
    except ValidationError as ve:
        location = "/".join(str(p) for p in ve.absolute_path) or "<root>"
        raise ConfigurationError(f"invalid image definition at {location}: {ve.message}") from ve

    image = data.get("image") or {}
    k8s = data.get("kubernetes") or {}
    network = k8s.get("network") or {}
    helm = k8s.get("helm") or {}

    try:
        nodes = tuple(
            Node(
                hostname=n["hostname"],
                type=NodeType(n["type"]),
                initialiser=n.get("initialiser", False),
            )
            for n in k8s.get("nodes") or []
        )
    except ValueError as e:
        raise ConfigurationError(f"invalid node type: {e}") from e

    kubernetes = KubernetesDefinition(
        version=k8s.get("version", ""),
        nodes=nodes,
        network=Network(
            api_vip=network.get("apiVIP", ""),
            api_host=network.get("apiHost", ""),
        ),
        manifest_urls=tuple((k8s.get("manifests") or {}).get("urls") or []),
        helm_charts=tuple(
            HelmChartDefinition(
                name=c["name"],
                repository_name=c["repositoryName"],
                version=c["version"],
                target_namespace=c.get("targetNamespace", ""),
                create_namespace=c.get("createNamespace", False),
                install_namespace=c.get("installationNamespace", "kube-system"),
                values_file=c.get("valuesFile", ""),
            )
            for c in helm.get("charts") or []
        ),
        helm_repositories=tuple(
            HelmRepository(name=r["name"], url=r["url"])
            for r in helm.get("repositories") or []
        ),
        registry_mirrors=dict(k8s.get("registryMirrors") or {}),
    )

    definition = ImageDefinition(arch=image.get("arch", "x86_64"), kubernetes=kubernetes)
    validate_definition(definition)
    return definition


def validate_definition(definition: ImageDefinition) -> None:
    """Check the semantic rules the JSON schema cannot express.

    Raises:
        ConfigurationError: Describing every rule that failed
    """
    errors: List[str] = []
    k8s = definition.kubernetes

    if definition.arch not in SUPPORTED_ARCHITECTURES:
        errors.append(f"unsupported architecture: {definition.arch}")

    if k8s.version:
        try:
            Distribution.from_version(k8s.version)
        except ConfigurationError as e:
            errors.append(str(e))

    duplicates = [h for h, count in Counter(n.hostname for n in k8s.nodes).items() if count > 1]
    if duplicates:
        errors.append(f"duplicate node hostnames: {', '.join(sorted(duplicates))}")

    initialisers = [n for n in k8s.nodes if n.initialiser]
    if len(initialisers) > 1:
        errors.append("only one node can be specified as an initialiser")
    if any(n.type != NodeType.SERVER for n in initialisers):
        errors.append("initialiser node must be a server")

    if k8s.nodes and not any(n.type == NodeType.SERVER for n in k8s.nodes):
        errors.append("at least one server node is required")

    if not k8s.single_node and not k8s.network.api_vip:
        errors.append("network.apiVIP is required for multi-node clusters")

    for chart in k8s.helm_charts:
        if k8s.helm_repository(chart.repository_name) is None:
            errors.append(
                f"helm chart '{chart.name}' references unknown repository '{chart.repository_name}'"
            )

    if errors:
        raise ConfigurationError("invalid image definition: " + "; ".join(errors))
