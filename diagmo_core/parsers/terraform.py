"""
Terraform importer.

Turns Terraform configuration text into an infrastructure diagram:
- Top-level blocks (resource, data, module, variable, output, provider)
  become nodes, with cloud icons for known resource types
- References between blocks become dependency edges drawn from the
  referenced block to the block that uses it
- Nodes are placed in a grid per (provider, block type) group

This is a brace-depth line scanner, not an HCL grammar. It understands
enough of the syntax to find block boundaries and references.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from ..log import get_logger
from ..models import (
    Edge,
    EdgeMarker,
    EdgeStyle,
    Node,
    NodeData,
    ParseResult,
    Provider,
    ShapeType,
    generate_edge_id,
    generate_node_id,
    node_style,
    provider_for_shape,
)
from ..layout import group_by, grouped_grid_layout

logger = get_logger(__name__)

BLOCK_TYPES = ("resource", "data", "module", "variable", "output", "provider")

_TYPED_BLOCK_RE = re.compile(r'^(resource|data)\s+"([^"]+)"\s+"([^"]+)"\s*(\{.*)?$')
_NAMED_BLOCK_RE = re.compile(r'^(module|variable|output|provider)\s+"([^"]+)"\s*(\{.*)?$')

# data.<type>.<name> or <type>.<name>, optionally followed by attributes
_REFERENCE_RE = re.compile(
    r"\b(data\.[A-Za-z_][\w-]*\.[A-Za-z_][\w-]*|[A-Za-z_]\w*\.[A-Za-z_][\w-]*)(?:\.[\w-]+|\[[^\]]*\])*"
)
_DEPENDS_ON_RE = re.compile(r"depends_on\s*=\s*\[([\s\S]*?)\]", re.IGNORECASE)

# Namespaces that never name another block
BUILTIN_NAMESPACES = ("var.", "local.", "path.", "terraform.", "each.", "count.", "self.")

# Provider -> generic icon
PROVIDER_SHAPES: dict[str, str] = {
    "aws": "aws-generic",
    "azurerm": "azure-generic",
    "google": "gcp-generic",
    "kubernetes": "kubernetes",
    "docker": "docker",
}

AWS_RESOURCE_ICONS: dict[str, str] = {
    "aws_instance": "aws-ec2",
    "aws_ec2_instance": "aws-ec2",
    "aws_lambda_function": "aws-lambda",
    "aws_s3_bucket": "aws-s3",
    "aws_rds_cluster": "aws-rds",
    "aws_rds_instance": "aws-rds",
    "aws_db_instance": "aws-rds",
    "aws_dynamodb_table": "aws-dynamodb",
    "aws_vpc": "aws-vpc",
    "aws_subnet": "aws-vpc",
    "aws_security_group": "aws-vpc",
    "aws_iam_role": "aws-iam",
    "aws_iam_policy": "aws-iam",
    "aws_iam_user": "aws-iam",
    "aws_cloudwatch_log_group": "aws-cloudwatch",
    "aws_cloudwatch_metric_alarm": "aws-cloudwatch",
    "aws_sns_topic": "aws-sns",
    "aws_sqs_queue": "aws-sqs",
    "aws_api_gateway_rest_api": "aws-api-gateway",
    "aws_apigatewayv2_api": "aws-api-gateway",
    "aws_ecs_cluster": "aws-ecs",
    "aws_ecs_service": "aws-ecs",
    "aws_ecs_task_definition": "aws-ecs",
    "aws_ecr_repository": "aws-ecr",
    "aws_elb": "aws-elb",
    "aws_lb": "aws-elb",
    "aws_alb": "aws-elb",
    "aws_cognito_user_pool": "aws-cognito",
    "aws_kms_key": "aws-kms",
    "aws_secretsmanager_secret": "aws-secrets-manager",
    "aws_ssm_parameter": "aws-ssm",
}

AZURE_RESOURCE_ICONS: dict[str, str] = {
    "azurerm_virtual_machine": "azure-vm",
    "azurerm_linux_virtual_machine": "azure-vm",
    "azurerm_windows_virtual_machine": "azure-vm",
    "azurerm_function_app": "azure-functions",
    "azurerm_linux_function_app": "azure-functions",
    "azurerm_storage_account": "azure-storage",
    "azurerm_storage_blob": "azure-blob",
    "azurerm_sql_database": "azure-sql",
    "azurerm_mssql_database": "azure-sql",
    "azurerm_cosmosdb_account": "azure-cosmos-db",
    "azurerm_virtual_network": "azure-vnet",
    "azurerm_subnet": "azure-vnet",
    "azurerm_kubernetes_cluster": "azure-aks",
    "azurerm_container_registry": "azure-container-registry",
    "azurerm_key_vault": "azure-key-vault",
    "azurerm_application_gateway": "azure-app-gateway",
    "azurerm_app_service": "azure-app-service",
    "azurerm_linux_web_app": "azure-app-service",
    "azurerm_api_management": "azure-api-management",
    "azurerm_servicebus_namespace": "azure-service-bus",
    "azurerm_eventgrid_topic": "azure-event-grid",
    "azurerm_eventhub": "azure-event-hub",
}

GCP_RESOURCE_ICONS: dict[str, str] = {
    "google_compute_instance": "gcp-compute-engine",
    "google_cloud_run_service": "gcp-cloud-run",
    "google_cloudfunctions_function": "gcp-cloud-functions",
    "google_storage_bucket": "gcp-cloud-storage",
    "google_sql_database_instance": "gcp-cloud-sql",
    "google_bigquery_dataset": "gcp-bigquery",
    "google_pubsub_topic": "gcp-pub-sub",
    "google_container_cluster": "gcp-gke",
    "google_compute_network": "gcp-vpc",
}

RESOURCE_ICONS: dict[str, str] = {**AWS_RESOURCE_ICONS, **AZURE_RESOURCE_ICONS, **GCP_RESOURCE_ICONS}

# Block type -> (background, border)
BLOCK_TYPE_COLORS: dict[str, tuple[str, str]] = {
    "resource": ("#dcfce7", "#16a34a"),
    "data": ("#dbeafe", "#2563eb"),
    "module": ("#fef3c7", "#d97706"),
    "variable": ("#e0e7ff", "#4f46e5"),
    "output": ("#f3e8ff", "#9333ea"),
    "provider": ("#f1f5f9", "#64748b"),
}

_CLOUD_PROVIDERS = {Provider.AWS, Provider.AZURE, Provider.GCP}
EDGE_COLOR = "#64748b"


@dataclass
class TerraformBlock:
    """A top-level Terraform block and the blocks it references."""
    block_type: str
    type: str
    name: str
    body: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)

    @property
    def provider(self) -> str:
        return extract_provider(self.type)

    @property
    def address(self) -> str:
        """The address other blocks use to reference this one."""
        if self.block_type == "resource":
            return f"{self.type}.{self.name}"
        if self.block_type == "data":
            return f"data.{self.type}.{self.name}"
        if self.block_type == "variable":
            return f"var.{self.name}"
        return f"{self.block_type}.{self.name}"

    @property
    def label(self) -> str:
        if self.block_type in ("data", "module"):
            return f"{self.block_type}.{self.name}"
        return self.name


def extract_provider(resource_type: str) -> str:
    """Provider family of a resource type (``aws_instance`` -> ``aws``)."""
    prefix = resource_type.split("_")[0]
    if prefix in ("aws", "azurerm", "google", "docker"):
        return prefix
    if prefix in ("kubernetes", "k8s"):
        return "kubernetes"
    return "default"


def resource_icon(resource_type: str) -> str:
    """
    Shape tag for a resource type.

    Specific resource icons win over the provider's generic icon, which wins
    over a plain rectangle.
    """
    if resource_type in RESOURCE_ICONS:
        return RESOURCE_ICONS[resource_type]
    provider = resource_type.split("_")[0]
    return PROVIDER_SHAPES.get(provider, ShapeType.RECTANGLE.value)


def _is_builtin(ref: str) -> bool:
    return ref.startswith(BUILTIN_NAMESPACES)


def extract_dependencies(body: str) -> list[str]:
    """
    Find the addresses of blocks referenced from a block body.

    Scans for ``type.name[.attr...]`` and ``${type.name.attr}`` references,
    skipping built-in namespaces, then merges in an explicit
    ``depends_on = [...]`` list.

    Args:
        body: The block body text

    Returns:
        Referenced addresses, deduplicated, in first-seen order
    """
    dependencies: list[str] = []

    for match in _REFERENCE_RE.finditer(body):
        ref = match.group(1)
        if not _is_builtin(ref):
            dependencies.append(ref)

    depends_on = _DEPENDS_ON_RE.search(body)
    if depends_on:
        for match in _REFERENCE_RE.finditer(depends_on.group(1)):
            ref = match.group(1)
            if not _is_builtin(ref):
                dependencies.append(ref)

    return list(dict.fromkeys(dependencies))


def _brace_delta(line: str) -> int:
    return line.count("{") - line.count("}")


def _match_block_header(line: str) -> Optional[tuple[TerraformBlock, str]]:
    typed = _TYPED_BLOCK_RE.match(line)
    if typed:
        block_type, resource_type, name, rest = typed.groups()
        return TerraformBlock(block_type=block_type, type=resource_type, name=name), rest or ""

    named = _NAMED_BLOCK_RE.match(line)
    if named:
        block_type, name, rest = named.groups()
        # Providers are typed by their own name; other named blocks by keyword
        resource_type = name if block_type == "provider" else block_type
        return TerraformBlock(block_type=block_type, type=resource_type, name=name), rest or ""

    return None


def scan_blocks(source: str) -> list[TerraformBlock]:
    """
    Split Terraform text into top-level blocks.

    A block starts at a recognized header line and ends when brace depth
    returns to zero. Comment and blank lines are skipped.

    Args:
        source: Terraform configuration text (files may be concatenated)

    Returns:
        Completed blocks in source order
    """
    blocks: list[TerraformBlock] = []
    current: Optional[TerraformBlock] = None
    depth = 0
    opened = False

    def finish(block: TerraformBlock):
        block.dependencies = extract_dependencies("\n".join(block.body))
        blocks.append(block)

    for line in source.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#") or trimmed.startswith("//"):
            continue

        if current is None:
            header = _match_block_header(trimmed)
            if header is None:
                continue
            current, rest = header
            depth = _brace_delta(rest)
            opened = "{" in rest
            if rest.strip("{} \t"):
                current.body.append(rest.strip().lstrip("{"))
            if opened and depth <= 0:
                finish(current)
                current = None
            continue

        current.body.append(line)
        depth += _brace_delta(line)
        opened = opened or "{" in line
        if opened and depth <= 0:
            finish(current)
            current = None

    if current is not None:
        logger.debug("Unterminated Terraform block %s", current.address)

    return blocks


def _build_node(block: TerraformBlock, node_id: str, position) -> Node:
    shape = resource_icon(block.type)
    is_cloud_icon = provider_for_shape(shape) in _CLOUD_PROVIDERS or shape in ("kubernetes", "docker")
    background, border = BLOCK_TYPE_COLORS.get(block.block_type, BLOCK_TYPE_COLORS["resource"])

    return Node(
        id=node_id,
        position=position,
        width=64 if is_cloud_icon else 160,
        height=64 if is_cloud_icon else 60,
        data=NodeData(
            label=block.label,
            type=shape,
            style=node_style(
                background_color="transparent" if is_cloud_icon else background,
                border_color=border,
                border_width=0 if is_cloud_icon else 2,
            ),
            extra={
                "terraformAddress": block.address,
                "terraformBlock": block.block_type,
                "terraformType": block.type,
                "provider": block.provider,
            },
        ),
    )


def parse_terraform(source: str) -> ParseResult:
    """
    Parse Terraform configuration into a dependency diagram.

    Never raises for malformed input: problems are reported in
    ``ParseResult.errors``.

    Args:
        source: Terraform configuration text

    Returns:
        ParseResult with one node per block and one edge per dependency
    """
    try:
        blocks = scan_blocks(source)
        if not blocks:
            return ParseResult(errors=["No Terraform resources found in the input"])

        groups = group_by(blocks, lambda b: (b.provider, b.block_type))
        positions = grouped_grid_layout(
            [[b.address for b in members] for members in groups.values()]
        )

        id_map: dict[str, str] = {}
        nodes: list[Node] = []
        for block in blocks:
            if block.address in id_map:
                logger.debug("Duplicate Terraform address %s, keeping the first", block.address)
                continue
            node_id = generate_node_id()
            id_map[block.address] = node_id
            nodes.append(_build_node(block, node_id, positions[block.address]))

        edges: list[Edge] = []
        for block in blocks:
            dependent_id = id_map[block.address]
            for dep in block.dependencies:
                referenced_id = id_map.get(dep)
                if not referenced_id or referenced_id == dependent_id:
                    continue
                # The referenced block flows into the block that uses it
                edges.append(Edge(
                    id=generate_edge_id(),
                    source=referenced_id,
                    target=dependent_id,
                    type="labeled",
                    style=EdgeStyle(stroke=EDGE_COLOR, stroke_width=1.5),
                    marker_end=EdgeMarker(type="arrowclosed", width=8, height=8, color=EDGE_COLOR),
                ))

        logger.debug("Terraform import: %d blocks, %d dependencies", len(nodes), len(edges))
        return ParseResult(nodes=nodes, edges=edges)

    except Exception as e:
        logger.exception("Unexpected error while parsing Terraform input")
        return ParseResult(errors=[f"Failed to parse Terraform: {e}"])
