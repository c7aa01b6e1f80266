from __future__ import annotations

import asyncio
import sys
import unittest
from pathlib import Path
from typing_extensions import override

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from afterthoughts.app.exceptions import (
    AfterthoughtsError,
    ConfirmationRequired,
    FormValidationError,
    OperationInFlight,
)
from afterthoughts.app.models import Diary
from afterthoughts.app.services.entry_editor import EditorMode, EntryEditor
from afterthoughts.tests.fakes import FakeScheduler, FakeSupabase

JOB_ID = "autosave:test"


class _VoiceStub:
    def __init__(self):
        self.finished = 0
        self.torn_down = 0

    def finish(self) -> None:
        self.finished += 1

    async def teardown(self) -> None:
        self.torn_down += 1


class EntryEditorTests(unittest.IsolatedAsyncioTestCase):
    client: FakeSupabase
    scheduler: FakeScheduler
    editor: EntryEditor

    @override
    async def asyncSetUp(self):
        self.client = FakeSupabase()
        self.scheduler = FakeScheduler()
        self.voice = _VoiceStub()
        self.editor = EntryEditor(
            self.client,  # pyright: ignore[reportArgumentType]
            Diary(id=1, user_id="user-1", title="Journal"),
            scheduler=self.scheduler,  # pyright: ignore[reportArgumentType]
            job_id=JOB_ID,
            autosave_interval_seconds=10,
            voice=self.voice,  # pyright: ignore[reportArgumentType]
        )

    async def _wait_for(self, method: str, table: str) -> None:
        for _ in range(100):
            if self.client.count(method, table):
                return
            await asyncio.sleep(0)
        self.fail(f"{method} {table} was never issued")

    async def test_autosave_then_publish_leaves_single_non_draft(self):
        await self.editor.load()
        self.editor.open_composer()
        self.assertTrue(self.scheduler.has_job(JOB_ID))
        self.assertEqual(self.scheduler.jobs[JOB_ID][1], 10)

        self.editor.set_title("Day one")
        self.editor.set_content("Hello")
        self.assertTrue(await self.scheduler.fire(JOB_ID))

        drafts = self.client.rows("entries", diary_id=1)
        self.assertEqual(len(drafts), 1)
        self.assertTrue(drafts[0]["is_draft"])

        self.editor.set_content("Hello world")
        self.assertTrue(await self.scheduler.fire(JOB_ID))
        self.assertEqual(self.client.count("insert", "entries"), 1)

        entry = await self.editor.publish()

        rows = self.client.rows("entries", diary_id=1)
        self.assertEqual(len(rows), 1)
        self.assertFalse(rows[0]["is_draft"])
        self.assertEqual(rows[0]["content"], "Hello world")
        self.assertEqual(str(entry.id), str(rows[0]["id"]))
        self.assertEqual(self.client.count("insert", "entries"), 1)

        self.assertFalse(self.scheduler.has_job(JOB_ID))
        self.assertIs(self.editor.mode, EditorMode.NONE)
        self.assertEqual(self.editor.composer.snapshot(), ("", ""))
        self.assertIsNone(self.editor.draft_id)
        self.assertEqual(self.voice.finished, 1)

    async def test_autosave_without_changes_is_noop(self):
        self.editor.open_composer()
        self.editor.set_title("T")
        self.editor.set_content("A")
        self.assertTrue(await self.scheduler.fire(JOB_ID))
        self.assertFalse(self.editor.has_unsaved_changes)

        self.assertFalse(await self.scheduler.fire(JOB_ID))
        self.assertFalse(await self.scheduler.fire(JOB_ID))
        self.assertEqual(self.client.count("insert", "entries"), 1)
        self.assertEqual(self.client.count("update", "entries"), 0)

    async def test_autosave_skips_blank_fields(self):
        self.editor.open_composer()
        self.editor.set_title("Only a title")
        self.assertFalse(await self.scheduler.fire(JOB_ID))

        self.editor.set_content("   ")
        self.assertFalse(await self.scheduler.fire(JOB_ID))
        self.assertEqual(self.client.count("insert", "entries"), 0)
        self.assertTrue(self.editor.has_unsaved_changes)

    async def test_keystroke_during_save_keeps_dirty_and_saves_latest(self):
        self.editor.open_composer()
        self.editor.set_title("T")
        self.editor.set_content("A")

        gate = asyncio.Event()
        self.client.pauses[("insert", "entries")] = gate
        task = asyncio.create_task(self.editor.autosave())
        await self._wait_for("insert", "entries")

        self.assertEqual(self.editor.status, "autosaving")
        # 保存进行中：再次触发直接跳过
        self.assertFalse(await self.editor.autosave())

        self.editor.set_content("AB")
        gate.set()
        self.assertTrue(await task)

        self.assertTrue(self.editor.has_unsaved_changes)
        self.assertEqual(self.client.rows("entries")[0]["content"], "A")

        self.client.pauses.clear()
        self.assertTrue(await self.scheduler.fire(JOB_ID))
        self.assertEqual(self.client.rows("entries")[0]["content"], "AB")
        self.assertEqual(self.client.count("insert", "entries"), 1)
        self.assertFalse(self.editor.has_unsaved_changes)

    async def test_load_restores_most_recent_draft(self):
        self.client.seed(
            "entries", diary_id=1, title="Old", content="old", is_draft=True,
            updated_at="2024-01-01T00:00:10+00:00",
        )
        newer = self.client.seed(
            "entries", diary_id=1, title="New", content="new", is_draft=True,
            updated_at="2024-01-01T00:00:20+00:00",
        )
        self.client.seed("entries", diary_id=1, title="Done", content="done", is_draft=False)
        self.client.seed("entries", diary_id=2, title="Other", content="x", is_draft=True)

        entries = await self.editor.load()

        self.assertEqual(len(entries), 3)
        self.assertIs(self.editor.mode, EditorMode.NONE)
        self.assertEqual(self.editor.composer.snapshot(), ("New", "new"))
        self.assertEqual(self.editor.draft_id, newer["id"])
        self.assertFalse(self.scheduler.has_job(JOB_ID))

        self.editor.open_composer()
        self.editor.set_content("new and more")
        self.assertTrue(await self.scheduler.fire(JOB_ID))
        self.assertEqual(self.client.count("insert", "entries"), 0)
        self.assertEqual(self.client.rows("entries", id=newer["id"])[0]["content"], "new and more")

    async def test_existing_backend_draft_is_reused(self):
        draft = self.client.seed("entries", diary_id=1, title="Tab A", content="a", is_draft=True)

        self.editor.open_composer()
        self.editor.set_title("Tab B")
        self.editor.set_content("b")
        self.assertTrue(await self.scheduler.fire(JOB_ID))

        self.assertEqual(self.client.count("insert", "entries"), 0)
        self.assertEqual(self.editor.draft_id, draft["id"])
        self.assertEqual(len(self.client.rows("entries", diary_id=1, is_draft=True)), 1)

    async def test_publish_without_draft_inserts_published_entry(self):
        self.editor.open_composer()
        self.editor.set_title("Quick")
        self.editor.set_content("note")

        await self.editor.publish()

        rows = self.client.rows("entries", diary_id=1)
        self.assertEqual(len(rows), 1)
        self.assertFalse(rows[0]["is_draft"])

    async def test_publish_validation_and_in_flight(self):
        self.editor.open_composer()
        self.editor.set_title("No content")
        with self.assertRaises(FormValidationError):
            await self.editor.publish()
        self.assertEqual(self.client.calls, [])

        self.editor.set_content("content")
        self.editor.saving = True
        with self.assertRaises(OperationInFlight):
            await self.editor.publish()

    async def test_close_composer_requires_confirmation_and_reverts(self):
        self.editor.open_composer()
        self.editor.set_title("T")
        self.editor.set_content("A")
        await self.scheduler.fire(JOB_ID)
        self.editor.set_content("A plus unsaved")

        self.assertTrue(self.editor.before_unload())
        with self.assertRaises(ConfirmationRequired):
            self.editor.close_composer()
        self.assertIs(self.editor.mode, EditorMode.NEW)
        self.assertTrue(self.scheduler.has_job(JOB_ID))

        self.editor.close_composer(confirmed=True)
        self.assertIs(self.editor.mode, EditorMode.NONE)
        self.assertFalse(self.scheduler.has_job(JOB_ID))
        self.assertEqual(self.editor.composer.snapshot(), ("T", "A"))
        self.assertFalse(self.editor.before_unload())

    async def test_switching_forms_requires_confirmation(self):
        published = self.client.seed("entries", diary_id=1, title="P", content="published")
        await self.editor.load()

        self.editor.open_composer()
        self.editor.set_title("dirty")
        with self.assertRaises(ConfirmationRequired):
            self.editor.open_edit(published["id"])
        self.assertIs(self.editor.mode, EditorMode.NEW)

        self.editor.open_edit(published["id"], confirmed=True)
        self.assertIs(self.editor.mode, EditorMode.EDIT)
        self.assertEqual(self.editor.edit_form.snapshot(), ("P", "published"))

    async def test_edit_autosaves_in_place_and_saves(self):
        published = self.client.seed("entries", diary_id=1, title="P", content="v1")
        await self.editor.load()

        self.editor.open_edit(str(published["id"]))
        self.editor.set_content("v2")
        self.assertTrue(await self.scheduler.fire(JOB_ID))

        row = self.client.rows("entries", id=published["id"])[0]
        self.assertEqual(row["content"], "v2")
        self.assertFalse(row["is_draft"])
        self.assertEqual(self.client.count("insert", "entries"), 0)

        self.editor.set_content("v3")
        await self.editor.save_edit()
        self.assertIs(self.editor.mode, EditorMode.NONE)
        self.assertFalse(self.scheduler.has_job(JOB_ID))
        self.assertEqual(self.client.rows("entries", id=published["id"])[0]["content"], "v3")

    async def test_delete_entry_requires_confirmation(self):
        draft = self.client.seed("entries", diary_id=1, title="D", content="d", is_draft=True)
        await self.editor.load()
        self.assertEqual(self.editor.draft_id, draft["id"])

        with self.assertRaises(ConfirmationRequired):
            await self.editor.delete_entry(draft["id"])
        self.assertEqual(len(self.client.rows("entries")), 1)

        await self.editor.delete_entry(draft["id"], confirmed=True)
        self.assertEqual(self.client.rows("entries"), [])
        self.assertEqual(self.editor.entries, [])
        self.assertIsNone(self.editor.draft_id)

    async def test_autosave_failure_keeps_changes(self):
        self.client.fail("insert", "entries")
        self.editor.open_composer()
        self.editor.set_title("T")
        self.editor.set_content("A")

        self.assertFalse(await self.scheduler.fire(JOB_ID))
        self.assertTrue(self.editor.has_unsaved_changes)
        self.assertEqual(self.editor.last_error, "insert entries failed")
        self.assertFalse(self.editor.saving)

    async def test_navigate_back_tears_down(self):
        self.editor.open_composer()
        self.editor.set_title("T")
        with self.assertRaises(ConfirmationRequired):
            await self.editor.navigate_back()

        await self.editor.navigate_back(confirmed=True)
        self.assertIs(self.editor.mode, EditorMode.CLOSED)
        self.assertFalse(self.scheduler.has_job(JOB_ID))
        self.assertEqual(self.voice.torn_down, 1)

        # 重复卸载不再触发任何清理
        await self.editor.teardown()
        self.assertEqual(self.voice.torn_down, 1)

    async def test_close_during_save_aligns_composer_with_backend(self):
        self.editor.open_composer()
        self.editor.set_title("T")
        self.editor.set_content("A")

        gate = asyncio.Event()
        self.client.pauses[("insert", "entries")] = gate
        task = asyncio.create_task(self.editor.autosave())
        await self._wait_for("insert", "entries")

        self.editor.close_composer(confirmed=True)
        gate.set()
        self.assertTrue(await task)

        self.assertIs(self.editor.mode, EditorMode.NONE)
        self.assertEqual(self.editor.composer.snapshot(), ("T", "A"))
        self.assertFalse(self.scheduler.has_job(JOB_ID))

    async def test_save_finishing_after_composer_reopened_keeps_new_changes(self):
        self.editor.open_composer()
        self.editor.set_title("T")
        self.editor.set_content("A")

        gate = asyncio.Event()
        self.client.pauses[("insert", "entries")] = gate
        task = asyncio.create_task(self.editor.autosave())
        await self._wait_for("insert", "entries")

        self.editor.close_composer(confirmed=True)
        self.editor.open_composer()
        self.editor.set_title("T")
        self.editor.set_content("A plus brand new unsaved text")
        gate.set()
        self.assertTrue(await task)

        self.assertTrue(self.editor.has_unsaved_changes)
        self.assertTrue(self.editor.before_unload())
        with self.assertRaises(ConfirmationRequired):
            self.editor.close_composer()

        self.client.pauses.clear()
        self.assertTrue(await self.scheduler.fire(JOB_ID))
        rows = self.client.rows("entries")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["content"], "A plus brand new unsaved text")
        self.assertFalse(self.editor.has_unsaved_changes)

    async def test_save_finishing_after_switching_edited_entry_keeps_new_changes(self):
        first = self.client.seed("entries", diary_id=1, title="A", content="a")
        second = self.client.seed("entries", diary_id=1, title="B", content="b")
        await self.editor.load()

        self.editor.open_edit(first["id"])
        self.editor.set_content("a edited")

        gate = asyncio.Event()
        self.client.pauses[("update", "entries")] = gate
        task = asyncio.create_task(self.editor.autosave())
        await self._wait_for("update", "entries")

        self.editor.open_edit(second["id"], confirmed=True)
        self.editor.set_content("b edited")
        gate.set()
        self.assertTrue(await task)

        self.assertTrue(self.editor.has_unsaved_changes)
        with self.assertRaises(ConfirmationRequired):
            self.editor.close_edit()

        self.client.pauses.clear()
        self.assertTrue(await self.scheduler.fire(JOB_ID))
        contents = {row["id"]: row["content"] for row in self.client.rows("entries")}
        self.assertEqual(contents, {first["id"]: "a edited", second["id"]: "b edited"})

    async def test_edit_autosave_without_entry_is_rejected(self):
        self.editor.mode = EditorMode.EDIT
        self.editor.edit_form.title = "T"
        self.editor.edit_form.content = "C"
        self.editor.has_unsaved_changes = True

        with self.assertRaises(AfterthoughtsError):
            await self.editor.autosave()
        self.assertFalse(self.editor.saving)
        self.assertEqual(self.client.count("update", "entries"), 0)


if __name__ == "__main__":
    unittest.main()
