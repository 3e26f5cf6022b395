from typer.testing import CliRunner

from image_pipeline import cli
from image_pipeline.errors import QueryError, QueueConnectionError
from image_pipeline.services.producer import ProducerReport

runner = CliRunner()


def test_produce_reports_counts(monkeypatch):
    async def fake_produce_once(s, completion):
        return ProducerReport(published=3, skipped=1)

    monkeypatch.setattr(cli, "produce_once", fake_produce_once)
    monkeypatch.setattr(cli, "_completion_store", lambda s: None)

    result = runner.invoke(cli.app, ["produce"])

    assert result.exit_code == 0
    assert "published=3 skipped=1" in result.output


def test_produce_exits_non_zero_when_broker_is_down(monkeypatch):
    async def fake_produce_once(s, completion):
        raise QueueConnectionError("broker unreachable after 5 attempt(s)")

    monkeypatch.setattr(cli, "produce_once", fake_produce_once)
    monkeypatch.setattr(cli, "_completion_store", lambda s: None)

    result = runner.invoke(cli.app, ["produce"])

    assert result.exit_code == 1


def test_build_pool_uses_requested_size(tmp_path):
    s = cli.Settings(_env_file=None, result_dir=str(tmp_path), worker_count=4)
    pool = cli.build_pool(s, 3, completion=None)
    assert pool.size == 3


def test_produce_exits_non_zero_when_catalog_is_unreachable(monkeypatch):
    async def fake_produce_once(s, completion):
        raise QueryError("failed to query pending product images: [Errno 111] Connect call failed")

    monkeypatch.setattr(cli, "produce_once", fake_produce_once)
    monkeypatch.setattr(cli, "_completion_store", lambda s: None)

    result = runner.invoke(cli.app, ["produce"])

    assert result.exit_code == 1
