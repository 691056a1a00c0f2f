import typing

import pytest

from infragraph import engine, loader, resources, simulator, state, waiters

FAST = waiters.Backoff(initial=0.001, maximum=0.005, factor=2.0)

THREE_TIER = {
    "variables": {
        "project_name": {"default": "demo"},
        "instance_count": {"type": "number", "default": 2},
    },
    "provider": {"region": "eu-west-1"},
    "resources": {
        "aws_vpc": {"main": {"cidr_block": "10.0.0.0/16"}},
        "aws_subnet": {
            "public": {
                "vpc_id": "${aws_vpc.main.id}",
                "cidr_block": "10.0.1.0/24",
            }
        },
        "aws_security_group": {
            "web": {
                "name": "${var.project_name}-web",
                "vpc_id": "${aws_vpc.main.id}",
                "ingress": [
                    {
                        "from_port": 80,
                        "to_port": 80,
                        "protocol": "tcp",
                        "cidr_blocks": ["0.0.0.0/0"],
                    }
                ],
            }
        },
        "aws_instance": {
            "web": {
                "count": "${var.instance_count}",
                "ami": "ami-12345678",
                "instance_type": "t3.micro",
                "subnet_id": "${aws_subnet.public.id}",
                "vpc_security_group_ids": ["${aws_security_group.web.id}"],
                "tags": {"Name": "${var.project_name}-web-${count.index}"},
            }
        },
    },
    "outputs": {
        "vpc_id": "${aws_vpc.main.id}",
        "web_ips": {"value": "${aws_instance.web[*].private_ip}"},
    },
}


def make_plan(
    document: typing.Mapping[str, typing.Any],
    provider=None,
    variables: typing.Optional[typing.Mapping[str, typing.Any]] = None,
) -> resources.Plan:
    return loader.load_plan(
        document, provider or simulator.SimulatedProvider(), variables=variables
    )


@pytest.fixture
def provider():
    return simulator.SimulatedProvider()


@pytest.fixture
def store():
    return state.StateStore()


@pytest.fixture
def make_engine(store):
    def factory(provider, **kwargs):
        kwargs.setdefault("backoff", FAST)
        return engine.Engine(provider, kwargs.pop("store", store), **kwargs)

    return factory
