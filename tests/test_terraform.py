from diagmo_core.parsers.terraform import (
    extract_dependencies,
    extract_provider,
    parse_terraform,
    resource_icon,
    scan_blocks,
)


NETWORK_TF = """
# Networking
resource "aws_vpc" "main" {
  cidr_block = "10.0.0.0/16"
}

resource "aws_subnet" "public" {
  vpc_id     = aws_vpc.main.id
  cidr_block = "10.0.1.0/24"
}

data "aws_ami" "ubuntu" {
  most_recent = true
}

resource "aws_instance" "web" {
  ami           = data.aws_ami.ubuntu.id
  instance_type = "t3.micro"
  subnet_id     = aws_subnet.public.id
  tags = {
    Name = "web-${var.env}"
  }
  depends_on = [aws_vpc.main]
}

variable "env" {}

output "web_ip" {
  value = aws_instance.web.public_ip
}
"""


def _by_address(result):
    return {n.data.extra["terraformAddress"]: n for n in result.nodes}


def test_subnet_reference_becomes_edge_from_subnet_to_instance():
    source = """
resource "aws_subnet" "public" {
  cidr_block = "10.0.1.0/24"
}
resource "aws_instance" "web" { subnet_id = aws_subnet.public.id }
"""
    result = parse_terraform(source)
    nodes = _by_address(result)

    assert len(result.edges) == 1
    edge = result.edges[0]
    assert edge.source == nodes["aws_subnet.public"].id
    assert edge.target == nodes["aws_instance.web"].id


def test_all_block_types_are_found():
    blocks = scan_blocks(NETWORK_TF)
    assert [(b.block_type, b.name) for b in blocks] == [
        ("resource", "main"),
        ("resource", "public"),
        ("data", "ubuntu"),
        ("resource", "web"),
        ("variable", "env"),
        ("output", "web_ip"),
    ]


def test_dependency_edges_point_from_referenced_to_dependent():
    result = parse_terraform(NETWORK_TF)
    nodes = _by_address(result)
    names = {n.id: address for address, n in nodes.items()}
    pairs = {(names[e.source], names[e.target]) for e in result.edges}

    assert pairs == {
        ("aws_vpc.main", "aws_subnet.public"),
        ("aws_vpc.main", "aws_instance.web"),
        ("data.aws_ami.ubuntu", "aws_instance.web"),
        ("aws_subnet.public", "aws_instance.web"),
        ("aws_instance.web", "output.web_ip"),
    }


def test_builtin_namespaces_and_duplicates_are_not_dependencies():
    body = """
  name   = "${var.prefix}-${local.suffix}"
  count  = count.index
  region = aws_vpc.main.region
  other  = aws_vpc.main.id
  depends_on = [aws_vpc.main, module.network]
"""
    assert extract_dependencies(body) == ["aws_vpc.main", "module.network"]


def test_interpolated_reference():
    assert extract_dependencies('subnet = "${aws_subnet.a.id}"') == ["aws_subnet.a"]


def test_self_reference_is_ignored():
    source = """
resource "aws_security_group" "sg" {
  name = aws_security_group.sg.name
}
"""
    result = parse_terraform(source)
    assert len(result.nodes) == 1
    assert result.edges == []


def test_labels_icons_and_sizes():
    result = parse_terraform(NETWORK_TF + '\nmodule "network" {\n  source = "./net"\n}\n')
    nodes = _by_address(result)

    instance = nodes["aws_instance.web"]
    assert instance.shape == "aws-ec2"
    assert (instance.width, instance.height) == (64, 64)
    assert instance.data.style.background_color == "transparent"
    assert instance.data.style.border_width == 0

    assert nodes["data.aws_ami.ubuntu"].label == "data.ubuntu"
    assert nodes["module.network"].label == "module.network"

    variable = nodes["var.env"]
    assert variable.shape == "rectangle"
    assert (variable.width, variable.height) == (160, 60)
    assert variable.data.style.border_width == 2


def test_groups_are_stacked_by_provider_and_block_type():
    result = parse_terraform(NETWORK_TF)
    nodes = _by_address(result)

    resources = [nodes[a] for a in ("aws_vpc.main", "aws_subnet.public", "aws_instance.web")]
    assert {n.position.y for n in resources[:2]} == {100}
    # Three members -> two columns; the third wraps to a second row
    assert resources[2].position.y > resources[0].position.y
    assert nodes["data.aws_ami.ubuntu"].position.y > resources[2].position.y


def test_comments_and_single_line_blocks():
    source = """
// resource "aws_s3_bucket" "ignored" {
# resource "aws_s3_bucket" "also_ignored" {
resource "aws_s3_bucket" "logs" {}
resource "aws_s3_bucket" "data" {
  # logging = aws_s3_bucket.logs.id
}
"""
    result = parse_terraform(source)
    assert sorted(n.label for n in result.nodes) == ["data", "logs"]
    assert result.edges == []


def test_provider_and_icon_lookup():
    assert extract_provider("azurerm_linux_virtual_machine") == "azurerm"
    assert extract_provider("k8s_deployment") == "kubernetes"
    assert extract_provider("random_id") == "default"
    assert resource_icon("aws_lambda_function") == "aws-lambda"
    assert resource_icon("aws_glue_job") == "aws-generic"
    assert resource_icon("google_storage_bucket") == "gcp-cloud-storage"
    assert resource_icon("random_id") == "rectangle"


def test_no_blocks_reports_error():
    result = parse_terraform("locals {\n  a = 1\n}\n")
    assert result.nodes == []
    assert result.errors == ["No Terraform resources found in the input"]
