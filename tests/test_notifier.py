"""
Tests for the status message safe-edit discipline.
"""
import pytest

from scribebot.notifier import LogNotifier, StatusMessage, safe_send


@pytest.mark.asyncio
async def test_first_update_posts_then_edits(notifier):
    status = StatusMessage(notifier)
    await status.update("one")
    await status.update("two")

    assert notifier.events == [("post", 1, "one"), ("update", 1, "two")]
    assert status.text == "two"


@pytest.mark.asyncio
async def test_failed_edit_deletes_and_reposts(notifier_factory):
    notifier = notifier_factory(fail_updates=True)
    status = StatusMessage(notifier)
    await status.update("one")
    await status.update("two")

    assert notifier.events == [("post", 1, "one"), ("delete", 1, None), ("post", 2, "two")]
    assert status.handle == 2


@pytest.mark.asyncio
async def test_post_failure_never_raises(notifier_factory):
    status = StatusMessage(notifier_factory(fail_posts=True))
    await status.update("one")
    assert status.handle is None


@pytest.mark.asyncio
async def test_clear_deletes_once(notifier):
    status = StatusMessage(notifier)
    await status.update("one")
    await status.clear()
    await status.clear()
    assert [e for e in notifier.events if e[0] == "delete"] == [("delete", 1, None)]


@pytest.mark.asyncio
async def test_safe_send_reports_failure(notifier_factory):
    class Broken(notifier_factory):
        async def send(self, text):
            raise RuntimeError("Missing Permissions")

    assert await safe_send(notifier_factory(), "hi") is True
    assert await safe_send(Broken(), "hi") is False


@pytest.mark.asyncio
async def test_log_notifier_records(tmp_path):
    notifier = LogNotifier()
    status = StatusMessage(notifier)
    await status.update("working")
    await notifier.send("article")
    await notifier.send_file(tmp_path / "img.png")

    assert notifier.sent == ["article"]
    assert notifier.files == [tmp_path / "img.png"]
