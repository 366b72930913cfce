"""
Queue manager tests: state machine, progress, artifacts, auto-download and isolation.

Run with: pytest tests/test_service.py -v
"""
import asyncio
import io
import threading
import time

import fitz  # PyMuPDF
import pytest
from PIL import Image

from converter.conversion.errors import DecodeError, InvalidState, NotFound, QueueFull, ReadError
from converter.conversion.models import FileCandidate, TaskStatus

PT_PER_MM = 72 / 25.4


def slow_transcoder(delay, result=(b"%PDF-1.4 fake", "out.pdf")):
    def run(source):
        time.sleep(delay)
        return result
    return run


def failing_transcoder(delay=0.0, error=DecodeError("Failed to load image")):
    def run(source):
        time.sleep(delay)
        raise error
    return run


async def sample_progress(manager, item_id, samples):
    while True:
        item = manager.get(item_id)
        if item is None or item.status != TaskStatus.CONVERTING:
            return
        samples.append(item.progress)
        await asyncio.sleep(0.005)


class TestEnqueue:
    def test_creates_pending_items_in_order(self, make_queue, jpeg_candidate, pdf_candidate):
        harness = make_queue()
        items = harness.manager.enqueue([jpeg_candidate, pdf_candidate])
        assert [i.source for i in items] == [jpeg_candidate, pdf_candidate]
        assert all(i.status == TaskStatus.PENDING and i.progress == 0 for i in items)
        assert all(i.output is None for i in items)
        assert len({i.item_id for i in items}) == 2
        assert harness.manager.items() == items

    def test_appends_without_touching_existing(self, make_queue, jpeg_candidate, pdf_candidate):
        harness = make_queue()
        [first] = harness.manager.enqueue([jpeg_candidate])
        [second] = harness.manager.enqueue([pdf_candidate])
        assert harness.manager.items() == [first, second]

    def test_empty_enqueue(self, make_queue):
        assert make_queue().manager.enqueue([]) == []

    def test_queue_limit(self, make_queue, jpeg_candidate):
        harness = make_queue(max_items=2)
        with pytest.raises(QueueFull):
            harness.manager.enqueue([jpeg_candidate] * 3)
        assert harness.manager.items() == []
        assert len(harness.manager.enqueue([jpeg_candidate] * 2)) == 2

    def test_concurrent_enqueue_loses_nothing(self, make_queue, jpeg_candidate):
        harness = make_queue()

        def worker():
            for _ in range(25):
                harness.manager.enqueue([jpeg_candidate])

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        items = harness.manager.items()
        assert len(items) == 200
        assert len({i.item_id for i in items}) == 200


class TestConvert:
    def test_convert_without_event_loop_leaves_item_pending(self, make_queue, jpeg_candidate):
        harness = make_queue()
        [item] = harness.manager.enqueue([jpeg_candidate])
        with pytest.raises(RuntimeError):
            harness.manager.convert(item.item_id)
        current = harness.manager.get(item.item_id)
        assert current.status == TaskStatus.PENDING
        assert current.attempt == 0

    def test_image_to_document_end_to_end(self, make_queue, jpeg_candidate):
        harness = make_queue()

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            await harness.manager.join()
            return harness.manager.get(item.item_id)

        item = asyncio.run(scenario())
        assert item.status == TaskStatus.COMPLETED
        assert item.progress == 100
        assert item.output.file_name == "photo.pdf"
        assert harness.artifacts.get(item.output.handle).media_type == "application/pdf"
        with fitz.open(stream=item.output.blob, filetype="pdf") as doc:
            assert doc.page_count == 1
            rect = doc[0].rect
            [image] = doc[0].get_images(full=True)
        assert rect.width / PT_PER_MM == pytest.approx(210, abs=0.5)
        assert rect.height / PT_PER_MM == pytest.approx(210 * 300 / 400, abs=0.5)
        assert (image[2], image[3]) == (400, 300)

    def test_document_to_image_end_to_end(self, make_queue, pdf_candidate):
        harness = make_queue()

        async def scenario():
            [item] = harness.manager.enqueue([pdf_candidate])
            await harness.manager.convert(item.item_id)
            return harness.manager.get(item.item_id)

        item = asyncio.run(scenario())
        assert item.status == TaskStatus.COMPLETED
        assert item.output.file_name == "report.jpg"
        with Image.open(io.BytesIO(item.output.blob)) as img:
            assert (img.format, img.size) == ("JPEG", (800, 600))

    def test_progress_is_monotonic_and_capped(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0.3))
        samples: list[int] = []

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            task = harness.manager.convert(item.item_id)
            await asyncio.gather(task, sample_progress(harness.manager, item.item_id, samples))
            return harness.manager.get(item.item_id)

        item = asyncio.run(scenario())
        assert samples[0] == 0
        assert samples == sorted(samples)
        assert max(samples) == 90
        assert item.progress == 100

    def test_failure_sets_error_and_keeps_progress(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=failing_transcoder(delay=0.1))

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            await harness.manager.join()
            return harness.manager.get(item.item_id)

        item = asyncio.run(scenario())
        assert item.status == TaskStatus.ERROR
        assert item.output is None
        assert 0 < item.progress <= 90
        assert "Failed to load image" in item.error
        assert "Conversion failed" in harness.titles()
        assert len(harness.artifacts) == 0
        assert harness.downloads.entries() == []

    def test_unexpected_exception_becomes_error(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=failing_transcoder(error=RuntimeError("boom")))

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            return harness.manager.get(item.item_id)

        item = asyncio.run(scenario())
        assert item.status == TaskStatus.ERROR
        assert item.error == "boom"

    def test_timeout_becomes_error(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0.5), timeout=0.05)

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            return harness.manager.get(item.item_id)

        item = asyncio.run(scenario())
        assert item.status == TaskStatus.ERROR
        assert "timed out" in item.error
        assert len(harness.artifacts) == 0

    def test_corrupt_upload_through_real_transcoder(self, make_queue):
        harness = make_queue()
        broken = FileCandidate("broken.pdf", "application/pdf", b"not a pdf")

        async def scenario():
            [item] = harness.manager.enqueue([broken])
            await harness.manager.convert(item.item_id)
            return harness.manager.get(item.item_id)

        assert asyncio.run(scenario()).status == TaskStatus.ERROR

    def test_unknown_item_raises_not_found(self, make_queue):
        harness = make_queue()

        async def scenario():
            harness.manager.convert("missing")

        with pytest.raises(NotFound):
            asyncio.run(scenario())

    def test_cannot_convert_twice_while_running(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0.1))

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            task = harness.manager.convert(item.item_id)
            with pytest.raises(InvalidState):
                harness.manager.convert(item.item_id)
            await task

        asyncio.run(scenario())

    def test_cannot_convert_completed_item(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0))

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            with pytest.raises(InvalidState):
                harness.manager.convert(item.item_id)
            await harness.manager.join()

        asyncio.run(scenario())
        assert len(harness.artifacts) == 1


class TestRetry:
    def test_error_item_can_be_retried(self, make_queue, pdf_candidate):
        calls = []

        def flaky(source):
            calls.append(source.name)
            if len(calls) == 1:
                time.sleep(0.05)
                raise ReadError("Failed to read file")
            return b"jpeg", "report.jpg"

        harness = make_queue(transcoder=flaky)

        async def scenario():
            [item] = harness.manager.enqueue([pdf_candidate])
            await harness.manager.convert(item.item_id)
            failed = harness.manager.get(item.item_id)
            task = harness.manager.convert(item.item_id)
            restarted = harness.manager.get(item.item_id)
            await task
            await harness.manager.join()
            return failed, restarted, harness.manager.get(item.item_id)

        failed, restarted, done = asyncio.run(scenario())
        assert failed.status == TaskStatus.ERROR and failed.progress > 0
        assert restarted.status == TaskStatus.CONVERTING
        assert restarted.progress == 0
        assert restarted.error is None
        assert restarted.attempt == 2
        assert done.status == TaskStatus.COMPLETED
        assert done.output.file_name == "report.jpg"
        assert len(harness.artifacts) == 1

    def test_retry_limit(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=failing_transcoder(), max_retries=1)

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            await harness.manager.convert(item.item_id)
            with pytest.raises(InvalidState):
                harness.manager.convert(item.item_id)
            return harness.manager.get(item.item_id)

        item = asyncio.run(scenario())
        assert item.status == TaskStatus.ERROR
        assert item.attempt == 2


class TestDownload:
    def test_auto_download_fires_once(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0))

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            await harness.manager.join()
            return harness.manager.get(item.item_id)

        item = asyncio.run(scenario())
        [request] = harness.downloads.entries()
        assert request.handle == item.output.handle
        assert request.file_name == "out.pdf"
        assert harness.titles().count("Download started") == 1
        assert harness.titles().count("Conversion completed!") == 1

    def test_repeated_download(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0))

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            await harness.manager.join()
            for _ in range(3):
                harness.manager.download(item.item_id)

        asyncio.run(scenario())
        assert len(harness.downloads.entries()) == 4
        assert len(harness.artifacts) == 1

    def test_download_rejected_unless_completed(self, make_queue, jpeg_candidate):
        harness = make_queue()
        [item] = harness.manager.enqueue([jpeg_candidate])
        with pytest.raises(InvalidState):
            harness.manager.download(item.item_id)
        with pytest.raises(NotFound):
            harness.manager.download("missing")
        assert harness.downloads.entries() == []
        assert harness.notifications.entries() == []

    def test_removed_item_skips_auto_download(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0), auto_download_delay=0.2)

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            assert harness.manager.remove(item.item_id)
            await asyncio.sleep(0.3)
            await harness.manager.join()

        asyncio.run(scenario())
        assert harness.downloads.entries() == []
        assert len(harness.artifacts) == 0


class TestRemove:
    def test_remove_releases_artifact_once(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0))

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            await harness.manager.convert(item.item_id)
            await harness.manager.join()
            return item.item_id

        item_id = asyncio.run(scenario())
        handle = harness.manager.get(item_id).output.handle
        assert harness.artifacts.get(handle) is not None
        assert harness.manager.remove(item_id) is True
        assert harness.artifacts.get(handle) is None
        assert harness.manager.get(item_id) is None
        assert harness.manager.items() == []
        assert harness.manager.remove(item_id) is False

    def test_remove_pending(self, make_queue, jpeg_candidate, pdf_candidate):
        harness = make_queue()
        first, second = harness.manager.enqueue([jpeg_candidate, pdf_candidate])
        assert harness.manager.remove(first.item_id)
        assert harness.manager.items() == [second]

    def test_remove_while_converting(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0.1))

        async def scenario():
            [item] = harness.manager.enqueue([jpeg_candidate])
            task = harness.manager.convert(item.item_id)
            assert harness.manager.remove(item.item_id)
            await task
            await harness.manager.join()

        asyncio.run(scenario())
        assert harness.manager.items() == []
        assert len(harness.artifacts) == 0
        assert "Conversion completed!" not in harness.titles()
        assert harness.downloads.entries() == []


class TestIsolation:
    def test_concurrent_conversions_do_not_interfere(self, make_queue):
        def routed(source):
            if source.name == "bad.jpg":
                time.sleep(0.05)
                raise DecodeError("bad image")
            time.sleep(0.2)
            return b"%PDF", "good.pdf"

        harness = make_queue(transcoder=routed)
        good = FileCandidate("good.jpg", "image/jpeg", b"1")
        bad = FileCandidate("bad.jpg", "image/jpeg", b"2")

        async def scenario():
            g, b = harness.manager.enqueue([good, bad])
            await asyncio.gather(harness.manager.convert(g.item_id), harness.manager.convert(b.item_id))
            await harness.manager.join()
            return harness.manager.get(g.item_id), harness.manager.get(b.item_id)

        g, b = asyncio.run(scenario())
        assert g.status == TaskStatus.COMPLETED and g.progress == 100
        assert g.output.file_name == "good.pdf"
        assert b.status == TaskStatus.ERROR and b.output is None
        assert b.progress <= 90
        assert len(harness.artifacts) == 1

    def test_queue_status_counts(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0))

        async def scenario():
            first, _ = harness.manager.enqueue([jpeg_candidate, jpeg_candidate])
            await harness.manager.convert(first.item_id)
            await harness.manager.join()

        asyncio.run(scenario())
        status = harness.manager.get_queue_status()
        assert status == {"pending": 1, "converting": 0, "completed": 1, "error": 0, "total": 2}

    def test_shutdown_releases_everything(self, make_queue, jpeg_candidate):
        harness = make_queue(transcoder=slow_transcoder(0))

        async def scenario():
            first, second = harness.manager.enqueue([jpeg_candidate, jpeg_candidate])
            await harness.manager.convert(first.item_id)
            await harness.manager.join()
            await harness.manager.shutdown()

        asyncio.run(scenario())
        assert harness.manager.items() == []
        assert len(harness.artifacts) == 0
