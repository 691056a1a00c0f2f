import typing

import pytest

from infragraph import aws, schemas, unknowns, values

RULE_BLOCK = schemas.Block(
    attributes={
        "from_port": schemas.Attribute(type="number", required=True),
        "rule_id": schemas.Attribute(type="string", computed=True),
    }
)


@pytest.mark.parametrize(
    "schema,value,expected_value",
    [
        pytest.param(schemas.Block(), None, None, id="empty"),
        pytest.param(
            schemas.Block(
                attributes={
                    "cidr_block": schemas.Attribute(type="string", required=True),
                    "id": schemas.Attribute(type="string", computed=True),
                },
            ),
            None,
            {"cidr_block": None, "id": unknowns.UNKNOWN},
            id="nothing declared",
        ),
        pytest.param(
            schemas.Block(
                attributes={
                    "cidr_block": schemas.Attribute(type="string", required=True),
                    "availability_zone": schemas.Attribute(
                        type="string", optional=True, computed=True
                    ),
                    "id": schemas.Attribute(type="string", computed=True),
                },
            ),
            {"cidr_block": "10.0.1.0/24", "availability_zone": "eu-west-1a"},
            {
                "cidr_block": "10.0.1.0/24",
                "availability_zone": "eu-west-1a",
                "id": unknowns.UNKNOWN,
            },
            id="declared optional computed kept",
        ),
        pytest.param(
            schemas.Block(
                block_types={
                    "health_check": schemas.NestedBlock(
                        nesting=schemas.NestingMode.SINGLE, block=RULE_BLOCK
                    )
                }
            ),
            {"health_check": {"from_port": 80}},
            {"health_check": {"from_port": 80, "rule_id": unknowns.UNKNOWN}},
            id="nested single",
        ),
        pytest.param(
            schemas.Block(
                block_types={
                    "ingress": schemas.NestedBlock(
                        nesting=schemas.NestingMode.LIST, block=RULE_BLOCK
                    )
                }
            ),
            {"ingress": [{"from_port": 80}, {"from_port": 443}]},
            {
                "ingress": [
                    {"from_port": 80, "rule_id": unknowns.UNKNOWN},
                    {"from_port": 443, "rule_id": unknowns.UNKNOWN},
                ]
            },
            id="nested list",
        ),
        pytest.param(
            schemas.Block(
                block_types={
                    "rules": schemas.NestedBlock(
                        nesting=schemas.NestingMode.MAP, block=RULE_BLOCK
                    )
                }
            ),
            {"rules": {"http": {"from_port": 80, "rule_id": "r-1"}}},
            {"rules": {"http": {"from_port": 80, "rule_id": "r-1"}}},
            id="nested map known",
        ),
        pytest.param(
            schemas.Block(
                block_types={
                    "ingress": schemas.NestedBlock(
                        nesting=schemas.NestingMode.SET, block=RULE_BLOCK
                    )
                }
            ),
            {"ingress": None},
            {"ingress": None},
            id="absent block",
        ),
    ],
)
def test_set_unknowns(
    schema: schemas.Block,
    value: typing.Dict[str, typing.Any],
    expected_value: typing.Dict[str, typing.Any],
):
    assert unknowns.set_unknowns(value=value, schema=schema) == expected_value


def test_planned_security_group():
    block = aws.SecurityGroup().to_block()
    declared = {
        "vpc_id": values.Reference("aws_vpc.main", "id"),
        "description": values.Template(
            ("web in ", values.Reference("aws_vpc.main", "id"))
        ),
        "ingress": [{"from_port": 80, "to_port": 80, "protocol": "tcp"}],
    }

    planned = unknowns.set_unknowns(unknowns.mask_expressions(declared), block)

    assert planned["vpc_id"] == unknowns.UNKNOWN
    assert planned["description"] == unknowns.UNKNOWN
    assert planned["id"] == unknowns.UNKNOWN
    assert planned["name"] == unknowns.UNKNOWN
    assert planned["tags"] is None
    assert planned["ingress"][0]["from_port"] == 80
    assert planned["egress"] is None


@pytest.mark.parametrize(
    "obj,expected",
    [
        pytest.param({"a": [1, {"b": "c"}]}, False, id="known"),
        pytest.param({"a": [1, {"b": unknowns.UNKNOWN}]}, True, id="nested"),
        pytest.param(unknowns.UNKNOWN, True, id="bare"),
        pytest.param(
            unknowns.mask_expressions(["${x}", values.Variable("x")]), True,
            id="masked",
        ),
    ],
)
def test_has_unknowns(obj, expected):
    assert unknowns.has_unknowns(obj) is expected
