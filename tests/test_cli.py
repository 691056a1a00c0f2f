import json
import os

import pytest
from click.testing import CliRunner

from infragraph import cli, simulator, state
from tests.conftest import THREE_TIER

DOCUMENT = {
    **THREE_TIER,
    "variables": {
        **THREE_TIER["variables"],
        "admin_password": {"sensitive": True},
    },
    "outputs": {
        **THREE_TIER["outputs"],
        "admin_password": {"value": "${var.admin_password}", "sensitive": True},
    },
}


def rejecting_provider():
    return simulator.SimulatedProvider(
        reject=lambda type_name, attributes: type_name == "aws_instance"
        and "InsufficientInstanceCapacity"
    )


@pytest.fixture
def paths(tmp_path):
    plan_path = tmp_path / "plan.json"
    plan_path.write_text(json.dumps(DOCUMENT))
    return str(plan_path), str(tmp_path / "infragraph.state")


@pytest.fixture
def invoke(paths):
    runner = CliRunner()
    _, state_path = paths

    def invoke(*args):
        return runner.invoke(cli.main, ["--state", state_path, *args])

    return invoke


@pytest.fixture
def applied(paths, invoke):
    plan_path, _ = paths
    result = invoke("apply", plan_path, "--var", "admin_password=hunter2")
    assert result.exit_code == 0, result.output
    return result


def test_plan(paths, invoke):
    plan_path, state_path = paths

    result = invoke("plan", plan_path, "--var", "admin_password=hunter2")

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    created = [line[2:] for line in lines if line.startswith("+ ")]
    assert created == [
        "aws_vpc.main",
        "aws_subnet.public",
        "aws_security_group.web",
        "aws_instance.web[0]",
        "aws_instance.web[1]",
    ]
    assert '    cidr_block = "10.0.0.0/16"' in lines
    assert "    vpc_id = (known after apply)" in lines
    assert "    default_security_group_id = (known after apply)" in lines
    assert '    tags = {"Name": "demo-web-1"}' in lines
    assert len(state.StateStore.load(state_path)) == 0


def test_apply(applied, paths, invoke):
    plan_path, state_path = paths

    assert "aws_vpc.main: ready" in applied.output
    assert "aws_instance.web[1]: ready" in applied.output
    assert '  vpc_id = "vpc-0001"' in applied.output
    assert "  admin_password = (sensitive)" in applied.output
    assert "hunter2" not in applied.output

    store = state.StateStore.load(state_path)
    assert sorted(store.ready()) == sorted(store)
    assert store.outputs["admin_password"].sensitive

    result = invoke("plan", plan_path, "--var", "admin_password=hunter2")
    assert "  aws_vpc.main (ready)" in result.output.splitlines()
    assert "+ " not in result.output


def test_apply_failure_exits_nonzero(paths, invoke):
    plan_path, state_path = paths

    result = invoke(
        "--provider",
        "tests.test_cli:rejecting_provider",
        "apply",
        plan_path,
        "--var",
        "admin_password=hunter2",
    )

    assert result.exit_code == 1
    assert "aws_vpc.main: ready" in result.output
    assert "aws_instance.web[0]: failed" in result.output
    assert "InsufficientInstanceCapacity" in result.output

    store = state.StateStore.load(state_path)
    assert store["aws_instance.web[0]"].status == state.ResourceStatus.FAILED


@pytest.mark.usefixtures("applied")
def test_output(paths, invoke):
    _, state_path = paths
    store = state.StateStore.load(state_path)
    web_ips = [
        store[f"aws_instance.web[{index}]"].attributes["private_ip"]
        for index in range(2)
    ]

    result = invoke("output")
    assert result.exit_code == 0
    assert result.output.splitlines() == [
        'vpc_id = "vpc-0001"',
        f"web_ips = {json.dumps(web_ips)}",
        "admin_password = (sensitive)",
    ]

    assert invoke("output", "admin_password").output == "hunter2\n"
    assert invoke("output", "vpc_id").output == "vpc-0001\n"
    assert json.loads(invoke("output", "web_ips").output) == web_ips

    everything = json.loads(invoke("output", "--json").output)
    assert everything["admin_password"] == {"value": "hunter2", "sensitive": True}
    assert everything["vpc_id"] == {"value": "vpc-0001", "sensitive": False}

    missing = invoke("output", "nope")
    assert missing.exit_code == 1
    assert "No output named 'nope'" in missing.output


@pytest.mark.usefixtures("applied")
def test_destroy(paths, invoke):
    _, state_path = paths

    result = invoke("destroy")

    assert result.exit_code == 0, result.output
    assert "aws_vpc.main: deleted" in result.output
    store = state.StateStore.load(state_path)
    assert len(store) == 0
    assert store.outputs == {}
    assert invoke("output").output == ""


@pytest.mark.parametrize(
    "document,message",
    [
        pytest.param(
            {"resources": {"aws_s3_bucket": {"logs": {}}}},
            "aws_s3_bucket",
            id="unsupported type",
        ),
        pytest.param(
            {
                "resources": {
                    "aws_vpc": {
                        "a": {"cidr_block": "x", "depends_on": ["aws_subnet.b"]}
                    },
                    "aws_subnet": {
                        "b": {"vpc_id": "${aws_vpc.a.id}", "cidr_block": "y"}
                    },
                }
            },
            "Dependency cycle",
            id="cycle",
        ),
    ],
)
@pytest.mark.parametrize("command", ["plan", "apply"])
def test_invalid_plan(tmp_path, invoke, document, message, command):
    plan_path = tmp_path / "invalid.yaml"
    plan_path.write_text(json.dumps(document))

    result = invoke(command, str(plan_path))

    assert result.exit_code == 1
    assert message in result.output


@pytest.mark.parametrize(
    "args",
    [
        pytest.param(["--var", "novalue"], id="assignment"),
        pytest.param(["--var", "undeclared=1"], id="undeclared"),
    ],
)
def test_bad_variables(paths, invoke, args):
    plan_path, _ = paths

    result = invoke("plan", plan_path, *args)

    assert result.exit_code != 0


def test_var_file(tmp_path, paths, invoke):
    plan_path, _ = paths
    var_file = tmp_path / "vars.yaml"
    var_file.write_text("admin_password: hunter2\ninstance_count: 1\n")

    result = invoke("plan", plan_path, "--var-file", str(var_file))

    assert result.exit_code == 0, result.output
    assert "+ aws_instance.web[0]" in result.output
    assert "aws_instance.web[1]" not in result.output


@pytest.mark.parametrize(
    "provider",
    [
        pytest.param("infragraph.simulator", id="no attribute"),
        pytest.param("infragraph.missing:Provider", id="no module"),
        pytest.param("infragraph.settings:PARALLELISM", id="not a provider"),
    ],
)
def test_bad_provider(paths, invoke, provider):
    plan_path, _ = paths

    result = invoke("--provider", provider, "plan", plan_path)

    assert result.exit_code == 2
    assert "--provider" in result.output


def test_force_unlock(paths, invoke):
    _, state_path = paths
    lock_path = state_path + ".lock"
    with open(lock_path, "w") as f:
        f.write("1")

    result = invoke("force-unlock")

    assert result.exit_code == 0, result.output
    assert result.output == f"Removed {lock_path}\n"
    assert not os.path.exists(lock_path)
    assert invoke("force-unlock").output == "State is not locked\n"
