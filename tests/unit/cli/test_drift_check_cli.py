# tests/unit/cli/test_drift_check_cli.py
import json

import pytest
from click.testing import CliRunner

from syncbridge.cli import drift_check as cli
from syncbridge.core.enums import DriftStatus
from syncbridge.core.exceptions import DriftCheckInProgressError
from syncbridge.services.reconciliation_service import DriftDetail, DriftReport


@pytest.fixture(autouse=True)
def quiet_logging(mocker):
    mocker.patch.object(cli, "configure_logging")


def report_with(*details):
    report = DriftReport()
    for detail in details:
        report.add(detail)
    return report


def test_clean_report_exits_zero(mocker):
    run = mocker.patch.object(cli, "run_drift_check", mocker.AsyncMock(
        return_value=report_with(DriftDetail(sku="GTR-001", status=DriftStatus.OK))
    ))

    result = CliRunner().invoke(cli.drift_check, ["--sku", "GTR-001"])

    assert result.exit_code == 0
    assert "DRIFT CHECK REPORT" in result.output
    run.assert_awaited_once_with(False, ("GTR-001",))


def test_mismatch_exits_one_and_prints_json(mocker):
    detail = DriftDetail(sku="GTR-001", status=DriftStatus.MISMATCH, quantity_diff=2, price_diff_percent=0.0)
    run = mocker.patch.object(cli, "run_drift_check", mocker.AsyncMock(return_value=report_with(detail)))

    result = CliRunner().invoke(cli.drift_check, ["--apply", "--json"])

    assert result.exit_code == 1
    assert json.loads(result.output)["mismatch_count"] == 1
    run.assert_awaited_once_with(True, ())


def test_running_check_exits_two(mocker):
    mocker.patch.object(cli, "run_drift_check", mocker.AsyncMock(side_effect=DriftCheckInProgressError("busy")))

    result = CliRunner().invoke(cli.drift_check, [])

    assert result.exit_code == 2
    assert "not started" in result.output
