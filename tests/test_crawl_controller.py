import errno
from pathlib import Path

import pytest

from facility_scraper.crawl_controller import CrawlController
from facility_scraper.errors import HttpStatusError
from facility_scraper.models import LedgerState
from facility_scraper.resilience.progress_ledger import LEDGER_HEADER


def _ledger_path(config, code="zz"):
    return Path(config.data_dir) / code / "ledger.csv"


@pytest.mark.asyncio
async def test_run_records_successes_and_permanent_failure(crawl_config, stub_jurisdiction, output_rows):
    stub = stub_jurisdiction(
        ["A", "B", "C"],
        behaviours={"B": HttpStatusError(404, "https://registry.example/B")},
    )
    controller = CrawlController(stub, crawl_config)

    result = await controller.run()

    assert result.success is True
    assert result.total_discovered == 3
    assert result.total_completed == 2
    assert result.total_failed == 1
    # 404 is permanent: exactly one attempt
    assert stub.fetch_calls.count("B") == 1

    rows = output_rows()
    assert sorted(row["id"] for row in rows) == ["A", "C"]
    assert rows[0]["detail"] == f"detail-{rows[0]['id']}"

    assert controller.ledger.load_finished_ids() == {"A", "C"}
    failed = controller.ledger.load_failed()
    assert list(failed) == ["B"]
    assert "404" in failed["B"]


@pytest.mark.asyncio
async def test_rerun_after_completion_does_no_fetches(crawl_config, stub_jurisdiction):
    first = stub_jurisdiction(["A", "B", "C"])
    await CrawlController(first, crawl_config).run()
    output = Path(crawl_config.output_dir) / "zz" / "facilities.csv"
    before = output.read_bytes()

    second = stub_jurisdiction(["A", "B", "C"])
    result = await CrawlController(second, crawl_config).run()

    assert result.success is True
    assert result.total_skipped == 3
    assert result.total_pending == 0
    assert second.fetch_calls == []
    assert output.read_bytes() == before


@pytest.mark.asyncio
async def test_resume_after_stop_completes_remaining_items(crawl_config, stub_jurisdiction, output_rows):
    crawl_config.concurrency = 1
    ids = ["1", "2", "3", "4", "5"]

    first = stub_jurisdiction(ids)
    controller = CrawlController(first, crawl_config)
    first.hooks["2"] = controller.stop
    result = await controller.run()

    assert result.stopped is True
    assert result.total_completed == 2
    assert result.total_not_started == 3
    assert controller.get_status()["not_started"] == 3
    assert controller.ledger.load_finished_ids() == {"1", "2"}

    second = stub_jurisdiction(ids)
    result = await CrawlController(second, crawl_config).run()

    assert sorted(second.fetch_calls) == ["3", "4", "5"]
    assert result.total_skipped == 2
    assert result.total_completed == 3
    rows = output_rows()
    assert sorted(row["id"] for row in rows) == ids


@pytest.mark.asyncio
async def test_resume_refetches_in_progress_and_torn_entries(crawl_config, stub_jurisdiction, output_rows):
    ledger = _ledger_path(crawl_config)
    ledger.parent.mkdir(parents=True)
    ledger.write_text(
        ",".join(LEDGER_HEADER) + "\n"
        "2024-01-01T00:00:00+00:00,A,finished,\n"
        "2024-01-01T00:00:01+00:00,B,in_progress,\n"
        "2024-01-01T00:00:02+00:00,C,fini",
        encoding="utf-8",
    )
    output = Path(crawl_config.output_dir) / "zz" / "facilities.csv"
    output.parent.mkdir(parents=True)
    output.write_text("id,name,detail\nA,Facility A,detail-A\n", encoding="utf-8")

    stub = stub_jurisdiction(["A", "B", "C"])
    result = await CrawlController(stub, crawl_config).run()

    assert sorted(stub.fetch_calls) == ["B", "C"]
    assert result.total_completed == 2
    rows = output_rows()
    assert sorted(row["id"] for row in rows) == ["A", "B", "C"]

    entries = CrawlController(stub, crawl_config).ledger.load_entries()
    assert all(entry.state is LedgerState.FINISHED for entry in entries.values())


@pytest.mark.asyncio
async def test_retry_failed_mode_only_refetches_failed(crawl_config, stub_jurisdiction, output_rows):
    first = stub_jurisdiction(
        ["A", "B", "C"],
        behaviours={"B": HttpStatusError(404, "https://registry.example/B")},
    )
    await CrawlController(first, crawl_config).run()

    second = stub_jurisdiction(["A", "B", "C"])
    controller = CrawlController(second, crawl_config)
    result = await controller.run(mode="retry-failed")

    assert second.fetch_calls == ["B"]
    assert result.total_completed == 1
    assert controller.ledger.load_failed() == {}
    assert sorted(row["id"] for row in output_rows()) == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_fresh_mode_refetches_everything(crawl_config, stub_jurisdiction, output_rows):
    await CrawlController(stub_jurisdiction(["A", "B"]), crawl_config).run()

    stub = stub_jurisdiction(["A", "B"])
    result = await CrawlController(stub, crawl_config).run(mode="fresh")

    assert sorted(stub.fetch_calls) == ["A", "B"]
    assert result.total_completed == 2
    assert len(output_rows()) == 2
    backups = list(_ledger_path(crawl_config).parent.glob("ledger.reset.*.csv"))
    assert len(backups) == 1


@pytest.mark.asyncio
async def test_transient_failures_are_retried(crawl_config, stub_jurisdiction):
    stub = stub_jurisdiction(
        ["A", "B"],
        behaviours={"B": [HttpStatusError(503, "u"), HttpStatusError(429, "u")]},
    )
    controller = CrawlController(stub, crawl_config)

    result = await controller.run()

    assert result.total_completed == 2
    assert result.total_failed == 0
    assert stub.fetch_calls.count("B") == 3

    status = controller.get_status()
    assert status["retry"]["total_retries"] == 2
    assert status["ledger"]["finished"] == 2
    assert status["buffered_results"] == 2


@pytest.mark.asyncio
async def test_exhausted_retries_are_recorded_as_failed(crawl_config, stub_jurisdiction):
    stub = stub_jurisdiction(["A"], behaviours={"A": HttpStatusError(503, "u")})
    controller = CrawlController(stub, crawl_config)

    result = await controller.run()

    # max_retries=2 -> three attempts
    assert stub.fetch_calls == ["A", "A", "A"]
    assert result.total_failed == 1
    assert "gave up after 3 attempts" in controller.ledger.load_failed()["A"]
    assert result.failures[0]["id"] == "A"


@pytest.mark.asyncio
async def test_concurrency_is_bounded(crawl_config, stub_jurisdiction):
    stub = stub_jurisdiction([str(i) for i in range(12)], delay=0.05)

    result = await CrawlController(stub, crawl_config).run()

    assert result.total_completed == 12
    assert stub.max_active == crawl_config.concurrency


@pytest.mark.asyncio
async def test_discovery_failure_aborts_run(crawl_config, stub_jurisdiction):
    stub = stub_jurisdiction(["A"], discover_errors=[HttpStatusError(503, "u")] * 3)

    result = await CrawlController(stub, crawl_config).run()

    assert result.success is False
    assert "Discovery failed" in result.error
    assert stub.discover_calls == 3
    assert stub.fetch_calls == []


@pytest.mark.asyncio
async def test_transient_discovery_failure_is_retried(crawl_config, stub_jurisdiction):
    stub = stub_jurisdiction(["A"], discover_errors=[HttpStatusError(502, "u")])

    result = await CrawlController(stub, crawl_config).run()

    assert result.success is True
    assert stub.discover_calls == 2
    assert result.total_completed == 1


@pytest.mark.asyncio
async def test_reuse_discovery_reads_snapshot(crawl_config, stub_jurisdiction):
    crawl_config.concurrency = 1
    first = stub_jurisdiction(["A", "B"])
    controller = CrawlController(first, crawl_config)
    first.hooks["A"] = controller.stop
    await controller.run()

    crawl_config.reuse_discovery = True
    second = stub_jurisdiction(["A", "B"], discover_errors=[HttpStatusError(500, "u")] * 5)
    result = await CrawlController(second, crawl_config).run()

    assert second.discover_calls == 0
    assert second.fetch_calls == ["B"]
    assert result.total_discovered == 2


@pytest.mark.asyncio
async def test_store_unavailable_aborts_run(crawl_config, stub_jurisdiction):
    stub = stub_jurisdiction(["A", "B", "C"])
    controller = CrawlController(stub, crawl_config)

    def disk_full(line, durable):
        raise OSError(errno.ENOSPC, "No space left on device")

    controller.ledger._write_line = disk_full

    result = await controller.run()

    assert result.success is False
    assert "unavailable" in result.error
    assert stub.fetch_calls == []


@pytest.mark.asyncio
async def test_sink_write_failure_fails_items_not_run(crawl_config, stub_jurisdiction):
    stub = stub_jurisdiction(["A", "B"])
    controller = CrawlController(stub, crawl_config)
    controller.sink.persist_retries = 0

    def broken_write(columns, rows):
        raise OSError(errno.EIO, "I/O error")

    controller.sink._write_atomic = broken_write

    result = await controller.run()

    # Every item is failed in the ledger; the final flush failure ends the run
    assert result.total_failed == 2
    assert result.total_completed == 0
    failed = controller.ledger.load_failed()
    assert sorted(failed) == ["A", "B"]
    assert all("Persistence error" in reason for reason in failed.values())
    assert controller.ledger.load_finished_ids() == set()
    assert result.success is False


@pytest.mark.asyncio
async def test_invalid_mode_raises(crawl_config, stub_jurisdiction):
    controller = CrawlController(stub_jurisdiction(["A"]), crawl_config)
    with pytest.raises(ValueError):
        await controller.run(mode="incremental")


@pytest.mark.asyncio
async def test_nothing_to_do_for_empty_discovery(crawl_config, stub_jurisdiction):
    result = await CrawlController(stub_jurisdiction([]), crawl_config).run()

    assert result.success is True
    assert result.total_discovered == 0
    assert result.total_completed == 0


@pytest.mark.asyncio
async def test_failure_counted_once_when_failed_mark_cannot_be_written(crawl_config, stub_jurisdiction):
    stub = stub_jurisdiction(
        ["A", "B", "C"],
        behaviours={"B": HttpStatusError(404, "https://registry.example/B")},
    )
    controller = CrawlController(stub, crawl_config)
    write_line = controller.ledger._write_line

    def failed_line_io_error(line, durable):
        if ",B,failed," in line:
            raise OSError(errno.EIO, "I/O error")
        write_line(line, durable)

    controller.ledger._write_line = failed_line_io_error

    result = await controller.run()

    assert result.success is True
    assert result.total_completed == 2
    assert result.total_failed == 1
    assert [f["id"] for f in result.failures] == ["B"]
    assert "404" in result.failures[0]["reason"]
    assert result.total_completed + result.total_failed == result.total_pending


@pytest.mark.asyncio
async def test_item_failed_by_flush_error_stays_out_of_output(crawl_config, stub_jurisdiction, output_rows):
    crawl_config.concurrency = 1
    stub = stub_jurisdiction(["A", "B"])
    controller = CrawlController(stub, crawl_config)
    controller.sink.persist_retries = 0
    write_atomic = controller.sink._write_atomic
    calls = []

    def fails_once(columns, rows):
        calls.append(len(rows))
        if len(calls) == 1:
            raise OSError(errno.EIO, "I/O error")
        write_atomic(columns, rows)

    controller.sink._write_atomic = fails_once

    result = await controller.run()

    assert result.total_completed == 1
    assert result.total_failed == 1
    assert [row["id"] for row in output_rows()] == ["B"]
    assert list(controller.ledger.load_failed()) == ["A"]
    assert controller.ledger.load_finished_ids() == {"B"}
