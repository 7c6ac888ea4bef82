from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator
from unittest.mock import Mock

import pytest

from fakes import JOB_ID, InMemoryResourceClient, faulty_cluster, namespaced
from installplan_fixer import cli
from installplan_fixer.config import AppConfig
from installplan_fixer.k8s import KubernetesAuthenticationError


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    yield
    package_logger = logging.getLogger("installplan_fixer")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True


def _use_cluster(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, store: object) -> None:
    monkeypatch.setattr(cli, "AppConfig", lambda: AppConfig(work_dir=tmp_path))
    monkeypatch.setattr(cli, "_build_resource_client", lambda *_args: store)


def _run_dirs(tmp_path: Path) -> tuple[Path, Path]:
    backup_dirs = list(tmp_path.glob("rh-ipfixer-backup.*"))
    log_files = list(tmp_path.glob("rh-ipfixer.*.log"))
    assert len(backup_dirs) == 1
    assert len(log_files) == 1
    return backup_dirs[0], log_files[0]


def test_main_with_version_flag_prints_version(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--version"]) == 0

    assert "Version: v1.0.0" in capsys.readouterr().out


def test_main_without_mode_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main([]) == 0

    output = capsys.readouterr().out
    assert "--check" in output
    assert "--fix" in output


def test_main_with_unknown_flag_exits_with_code_one(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as error:
        cli.main(["--frobnicate"])

    assert error.value.code == 1
    assert "Unknown parameter passed: --frobnicate" in capsys.readouterr().err


def test_main_with_check_and_fix_together_exits_with_code_one() -> None:
    with pytest.raises(SystemExit) as error:
        cli.main(["--check", "--fix"])

    assert error.value.code == 1


def test_check_with_no_faults_prints_message_and_exits_zero(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _use_cluster(monkeypatch, tmp_path, InMemoryResourceClient())

    assert cli.main(["--check"]) == 0

    output = capsys.readouterr().out
    assert "No faulty install plans found." in output
    backup_dir, log_file = _run_dirs(tmp_path)
    assert list(backup_dir.iterdir()) == []
    assert "No faulty install plans found." in log_file.read_text(encoding="utf-8")


def test_fix_with_no_faults_exits_zero_without_prompting(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    store = Mock(wraps=InMemoryResourceClient())
    _use_cluster(monkeypatch, tmp_path, store)
    prompt = Mock(return_value="y")
    monkeypatch.setattr("builtins.input", prompt)

    assert cli.main(["--fix"]) == 0

    prompt.assert_not_called()
    store.get.assert_not_called()
    store.delete.assert_not_called()
    assert "No faulty install plans found." in capsys.readouterr().out


def test_check_with_fault_lists_install_plan_without_changes(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    store = faulty_cluster()
    _use_cluster(monkeypatch, tmp_path, store)

    assert cli.main(["-c"]) == 0

    output = capsys.readouterr().out
    assert "Found 1 faulty install plan(s):" in output
    assert "open-cluster-management/install-5dfbk" in output
    assert store.deleted == []


def test_fix_with_one_fault_backs_up_three_files_and_leaves_resources(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    store = faulty_cluster()
    _use_cluster(monkeypatch, tmp_path, store)
    monkeypatch.setattr("builtins.input", lambda _prompt: "y")

    assert cli.main(["--fix"]) == 0

    backup_dir, log_file = _run_dirs(tmp_path)
    assert sorted(path.name for path in backup_dir.iterdir()) == [
        "open-cluster-management__install-5dfbk.configmap.yaml",
        "open-cluster-management__install-5dfbk.installplan.yaml",
        "open-cluster-management__install-5dfbk.job.yaml",
    ]
    assert store.deleted == []
    assert ("Job", "openshift-marketplace", JOB_ID) in store.objects
    output = capsys.readouterr().out
    assert "Processed 1 of 1 install plan(s) successfully." in output
    assert JOB_ID in log_file.read_text(encoding="utf-8")


def test_fix_with_enable_deletion_and_yes_deletes_resources_without_prompt(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    store = faulty_cluster()
    _use_cluster(monkeypatch, tmp_path, store)
    prompt = Mock(return_value="n")
    monkeypatch.setattr("builtins.input", prompt)

    assert cli.main(["--fix", "--yes", "--enable-deletion"]) == 0

    prompt.assert_not_called()
    assert len(store.deleted) == 3


@pytest.mark.parametrize("answer", ["n", "", "yes", "N"])
def test_fix_with_declined_confirmation_exits_one_without_mutation(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    answer: str,
) -> None:
    store = faulty_cluster()
    _use_cluster(monkeypatch, tmp_path, store)
    monkeypatch.setattr("builtins.input", lambda _prompt: answer)

    assert cli.main(["--fix", "--enable-deletion"]) == 1

    backup_dir, _ = _run_dirs(tmp_path)
    assert list(backup_dir.iterdir()) == []
    assert store.deleted == []
    assert "Aborting" in capsys.readouterr().out


def test_fix_with_closed_stdin_treats_prompt_as_declined(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_cluster(monkeypatch, tmp_path, faulty_cluster())
    monkeypatch.setattr("builtins.input", Mock(side_effect=EOFError))

    assert cli.main(["--fix"]) == 1


def test_fix_with_item_failure_exits_one_and_prints_recovery_paths(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _use_cluster(monkeypatch, tmp_path, faulty_cluster(message="unpacking"))
    monkeypatch.setattr("builtins.input", lambda _prompt: "Y")

    assert cli.main(["--fix"]) == 1

    backup_dir, log_file = _run_dirs(tmp_path)
    output = capsys.readouterr().out
    assert "Could not identify unpack job id" in output
    assert f"Execution was logged in: {log_file}" in output
    assert f"were backed up at: {backup_dir}" in output


def test_check_with_detection_failure_exits_one(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    store = InMemoryResourceClient()
    store.fail("list", "InstallPlan", reason="API status 403 (Forbidden)")
    _use_cluster(monkeypatch, tmp_path, store)

    assert cli.main(["--check"]) == 1

    output = capsys.readouterr().out
    assert "Error: API status 403 (Forbidden)" in output
    assert "Execution was logged in:" in output


def test_check_with_authentication_failure_exits_one(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "AppConfig", lambda: AppConfig(work_dir=tmp_path))
    monkeypatch.setattr(
        cli,
        "_build_resource_client",
        Mock(side_effect=KubernetesAuthenticationError("kubeconfig missing")),
    )

    assert cli.main(["--check"]) == 1


def test_check_warns_about_catalog_source_still_on_staging(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    store = InMemoryResourceClient(
        [
            namespaced(
                "CatalogSource",
                "openshift-marketplace",
                "redhat-operators",
                spec={"image": "registry.stage.redhat.io/redhat/redhat-operator-index:v4.13"},
            )
        ]
    )
    _use_cluster(monkeypatch, tmp_path, store)

    assert cli.main(["--check"]) == 0

    assert "Catalog source openshift-marketplace/redhat-operators still uses staging image" in capsys.readouterr().out


def test_check_with_debug_flag_prints_api_trace(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _use_cluster(monkeypatch, tmp_path, InMemoryResourceClient())

    assert cli.main(["--check", "--debug"]) == 0

    assert "Run context:" in capsys.readouterr().out


def test_main_with_non_integer_timeout_env_exits_one_with_error(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("IPFIXER_WORK_DIR", str(tmp_path))
    monkeypatch.setenv("IPFIXER_REQUEST_TIMEOUT_SECONDS", "soon")

    assert cli.main(["--check"]) == 1

    assert "Error: IPFIXER_REQUEST_TIMEOUT_SECONDS must be an integer, got 'soon'" in capsys.readouterr().err


def test_main_with_unusable_work_dir_exits_one_with_error(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    work_dir = tmp_path / "not-a-directory"
    work_dir.write_text("", encoding="utf-8")
    monkeypatch.setenv("IPFIXER_WORK_DIR", str(work_dir))

    assert cli.main(["--fix"]) == 1

    assert "Error:" in capsys.readouterr().err
