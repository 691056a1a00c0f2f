import json

import pytest
import yaml

from infragraph import errors, loader, simulator, values
from tests.conftest import THREE_TIER, make_plan


def test_load_three_tier():
    plan = make_plan(THREE_TIER)

    assert list(plan) == [
        "aws_vpc.main",
        "aws_subnet.public",
        "aws_security_group.web",
        "aws_instance.web[0]",
        "aws_instance.web[1]",
    ]
    assert plan.provider_config == {"region": "eu-west-1"}
    assert plan.groups == {
        "aws_instance.web": ["aws_instance.web[0]", "aws_instance.web[1]"]
    }

    instance = plan["aws_instance.web[1]"]
    assert instance.type == "aws_instance"
    assert instance.group == "aws_instance.web"
    assert instance.index == 1
    assert instance.attributes["tags"] == {"Name": "demo-web-1"}
    assert instance.attributes["subnet_id"] == values.Reference(
        "aws_subnet.public", "id"
    )
    assert plan["aws_security_group.web"].attributes["name"] == "demo-web"

    assert plan.outputs["web_ips"].value == values.Reference(
        "aws_instance.web", "private_ip", splat=True
    )
    assert not plan.outputs["vpc_id"].sensitive


def test_variable_overrides():
    plan = make_plan(
        THREE_TIER, variables={"instance_count": "3", "project_name": "shop"}
    )

    assert len(plan.groups["aws_instance.web"]) == 3
    assert plan["aws_instance.web[2]"].attributes["tags"] == {"Name": "shop-web-2"}


@pytest.mark.parametrize(
    "default,expected",
    [
        pytest.param(0.5, "r-0.5", id="fraction"),
        pytest.param(2.0, "r-2", id="integral float"),
        pytest.param(3, "r-3", id="int"),
    ],
)
def test_number_variable(default, expected):
    plan = make_plan(
        {
            "variables": {"ratio": {"type": "number", "default": default}},
            "resources": {
                "aws_vpc": {
                    "main": {
                        "cidr_block": "10.0.0.0/16",
                        "tags": {"r": "r-${var.ratio}"},
                    }
                }
            },
        }
    )

    assert plan["aws_vpc.main"].attributes["tags"] == {"r": expected}


def test_count_zero_registers_empty_group():
    plan = make_plan(THREE_TIER, variables={"instance_count": 0})

    assert plan.groups == {"aws_instance.web": []}
    assert "aws_instance.web[0]" not in plan


def test_depends_on():
    plan = make_plan(
        {
            "resources": {
                "aws_vpc": {"main": {"cidr_block": "10.0.0.0/16"}},
                "aws_efs_file_system": {
                    "shared": {"depends_on": ["aws_vpc.main"], "encrypted": True}
                },
            }
        }
    )

    shared = plan["aws_efs_file_system.shared"]
    assert shared.depends_on == ("aws_vpc.main",)
    assert "depends_on" not in shared.attributes
    assert shared.dependency_targets == ["aws_vpc.main"]


def test_sensitive_output():
    plan = make_plan(
        {
            "variables": {"password": {"sensitive": True}},
            "resources": {},
            "outputs": {
                "password": {
                    "value": "${var.password}",
                    "sensitive": True,
                    "description": "Database password",
                }
            },
        },
        variables={"password": "hunter2"},
    )

    output = plan.outputs["password"]
    assert output.value == "hunter2"
    assert output.sensitive
    assert output.description == "Database password"


@pytest.mark.parametrize(
    "document,variables,identifiers",
    [
        pytest.param(
            {"resources": {"aws_s3_bucket": {"logs": {}}}},
            None,
            ["aws_s3_bucket"],
            id="unsupported type",
        ),
        pytest.param(
            {"resources": {"aws_vpc": {"main": {}}}},
            None,
            ["aws_vpc.main"],
            id="schema error",
        ),
        pytest.param(
            {"resources": {"aws_vpc": {"main": {"cidr_block": "${aws_vpc}"}}}},
            None,
            ["aws_vpc.main"],
            id="bad reference",
        ),
        pytest.param(
            {"resources": {"aws_vpc": {"main": {"cidr_block": "${var.cidr}"}}}},
            None,
            ["aws_vpc.main"],
            id="undeclared variable",
        ),
        pytest.param(
            {"variables": {"cidr": {"type": "string"}}, "resources": {}},
            None,
            ["var.cidr"],
            id="required variable",
        ),
        pytest.param(
            {"variables": {}, "resources": {}},
            {"cidr": "10.0.0.0/16"},
            ["var.cidr"],
            id="undeclared override",
        ),
        pytest.param(
            {"variables": {"n": {"type": "number"}}, "resources": {}},
            {"n": "many"},
            ["var.n"],
            id="variable type",
        ),
        pytest.param(
            {"variables": {"n": {"type": "number"}}, "resources": {}},
            {"n": "nan"},
            ["var.n"],
            id="number not finite",
        ),
        pytest.param(
            {
                "variables": {"n": {"type": "number", "default": 1.5}},
                "resources": {
                    "aws_vpc": {"main": {"count": "${var.n}", "cidr_block": "x"}}
                },
            },
            None,
            ["aws_vpc.main"],
            id="fractional count",
        ),
        pytest.param(
            {"resources": {"aws_vpc": {"main": {"count": -1, "cidr_block": "x"}}}},
            None,
            ["aws_vpc.main"],
            id="negative count",
        ),
        pytest.param(
            {
                "resources": {
                    "aws_vpc": {"main": {"depends_on": "aws_vpc.a", "cidr_block": "x"}}
                }
            },
            None,
            ["aws_vpc.main"],
            id="depends_on not a list",
        ),
        pytest.param(
            {"resources": {"aws_vpc": {"main": {"cidr_block": "${count.index}"}}}},
            None,
            ["aws_vpc.main"],
            id="count index outside count",
        ),
        pytest.param(
            {"resources": {}, "outputs": {"x": {"description": "no value"}}},
            None,
            ["output.x"],
            id="output without value",
        ),
        pytest.param(
            {"provider": {"region": 1}, "resources": {}},
            None,
            ["provider"],
            id="provider config",
        ),
    ],
)
def test_invalid_documents(document, variables, identifiers):
    with pytest.raises(errors.ConfigurationError) as excinfo:
        make_plan(document, variables=variables)

    assert excinfo.value.identifiers == identifiers
    assert excinfo.value.diagnostics.has_errors()


def test_malformed_document():
    with pytest.raises(errors.ConfigurationError) as excinfo:
        make_plan({"resources": {"aws_vpc": ["main"]}})
    assert excinfo.value.identifiers == ["resources"]

    with pytest.raises(errors.ConfigurationError):
        make_plan(["not", "a", "mapping"])


def test_errors_are_collected():
    with pytest.raises(errors.ConfigurationError) as excinfo:
        make_plan(
            {
                "resources": {
                    "aws_vpc": {"a": {}, "b": {"cidr_block": 1}},
                    "aws_subnet": {"c": {"vpc_id": "x", "cidr_block": "y"}},
                }
            }
        )

    assert excinfo.value.identifiers == ["aws_vpc.a", "aws_vpc.b"]
    assert len(excinfo.value.diagnostics) == 2


@pytest.mark.parametrize(
    "suffix,dump",
    [
        pytest.param(".json", json.dumps, id="json"),
        pytest.param(".yaml", yaml.safe_dump, id="yaml"),
    ],
)
def test_load_file(tmp_path, suffix, dump):
    path = tmp_path / f"plan{suffix}"
    path.write_text(dump(THREE_TIER))

    plan = loader.load_file(
        str(path), simulator.SimulatedProvider(), variables={"instance_count": 1}
    )

    assert list(plan.groups["aws_instance.web"]) == ["aws_instance.web[0]"]


def test_read_document_invalid(tmp_path):
    path = tmp_path / "plan.yaml"
    path.write_text("resources: [unclosed")

    with pytest.raises(errors.ConfigurationError):
        loader.read_document(str(path))
