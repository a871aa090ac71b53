import json

import pytest

from topologies import registry
from wordpress_container.cli import main
from composition_test_helpers import service_blueprint


def printed(stream: str) -> str:
    """Drop the structured log records that share the stream with command output."""
    return "\n".join(line for line in stream.splitlines() if not line.startswith("{"))


def run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, printed(captured.out), printed(captured.err)


def test_plan_lists_the_realization_order(capsys):
    code, out, _ = run(capsys, "plan", "fargate-aurora-efs")
    order = registry.blueprint("fargate-aurora-efs").build().realization_order()
    lines = out.splitlines()

    assert code == 0
    assert len(lines) == len(order)
    assert lines[0].strip() == "1. Vpc (network)"
    assert lines[-1].split(". ", 1)[1].startswith(order[-1])


def test_unknown_topology_is_rejected_by_the_parser(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["plan", "lamp"])

    assert excinfo.value.code == 2
    assert "invalid choice" in capsys.readouterr().err


def test_deploy_prints_statuses_and_outputs(capsys, tmp_path):
    code, out, _ = run(capsys, "deploy", "ec2-minimum", "--state-dir", str(tmp_path))

    assert code == 0
    assert "succeeded  Vpc" in out
    assert "PublicDomainName: " in out
    state = json.loads((tmp_path / "ec2-minimum.json").read_text())
    assert state["resources"][0]["node_id"] == "Vpc"


def test_resume_reuses_the_recorded_state(capsys, tmp_path):
    run(capsys, "deploy", "ec2-minimum", "--state-dir", str(tmp_path))
    code, out, _ = run(capsys, "deploy", "ec2-minimum", "--state-dir", str(tmp_path), "--resume")

    assert code == 0
    assert "reused  Vpc" in out
    assert "succeeded" not in out


def test_destroy_releases_everything(capsys, tmp_path):
    run(capsys, "deploy", "ec2-minimum", "--state-dir", str(tmp_path))
    code, out, _ = run(capsys, "destroy", "ec2-minimum", "--state-dir", str(tmp_path))
    released = [line.split()[-1] for line in out.splitlines()]

    assert code == 0
    assert released[-1] == "Vpc"
    assert json.loads((tmp_path / "ec2-minimum.json").read_text()) == {"resources": []}


def test_unwritable_state_fails_the_deploy(capsys, tmp_path):
    blocker = tmp_path / "state"
    blocker.write_text("")

    code, out, err = run(capsys, "deploy", "ec2-minimum", "--state-dir", str(blocker))

    assert code == 1
    assert "failed  Vpc" in out
    assert "not-attempted" in out
    assert "Deployment failed at Vpc" in err


def test_corrupt_state_is_reported(capsys, tmp_path):
    (tmp_path / "ec2-minimum.json").write_text("{")

    code, _, err = run(capsys, "deploy", "ec2-minimum", "--state-dir", str(tmp_path))

    assert code == 1
    assert err.startswith("deploy ec2-minimum: State file")


def test_redeploy_releases_dropped_resources(capsys, tmp_path, monkeypatch):
    state_dir = str(tmp_path)
    monkeypatch.setattr(registry, "blueprint", lambda name: service_blueprint(with_logs=True, name=name))
    run(capsys, "deploy", "ec2-minimum", "--state-dir", state_dir)

    monkeypatch.setattr(registry, "blueprint", lambda name: service_blueprint(with_logs=False, name=name))
    code, out, _ = run(capsys, "deploy", "ec2-minimum", "--state-dir", state_dir)
    state = json.loads((tmp_path / "ec2-minimum.json").read_text())

    assert code == 0
    assert "released  Logs" in out
    assert [entry["node_id"] for entry in state["resources"]] == [
        "Vpc",
        "Cluster",
        "Task",
        "SvcSecurityGroup",
        "Svc",
    ]
