"""Unit tests for the milestone repository and its pure edit functions."""

from datetime import date

import pytest

from goalpost import models, repository as ops
from goalpost.errors import DuplicateIdError, NotFoundError, ValidationError
from goalpost.migration import StorageKeys
from goalpost.repository import MilestoneRepository
from goalpost.state import LocalCache


def _milestone(title="Q1", start="2026-01-01", end="2026-03-31"):
    return models.new_milestone(title, start, end)


class TestPureEdits:
    """Test cases for the snapshot-in, snapshot-out functions."""

    def test_add_task_appends(self):
        milestone = _milestone()
        first, second = models.new_task("A"), models.new_task("B")

        updated = ops.add_task(ops.add_task(milestone, first), second)

        assert [task.id for task in updated.tasks] == [first.id, second.id]
        assert milestone.tasks == ()

    def test_duplicate_task_id_is_rejected(self):
        task = models.new_task("A")
        milestone = ops.add_task(_milestone(), task)

        with pytest.raises(DuplicateIdError):
            ops.add_task(milestone, task)

    def test_duplicate_milestone_id_is_rejected(self):
        milestone = _milestone()

        with pytest.raises(DuplicateIdError):
            ops.create_milestone((milestone,), milestone)

    def test_update_keeps_position(self):
        a, b, c = _milestone("A"), _milestone("B"), _milestone("C")

        result = ops.update_milestone((a, b, c), ops.edit_milestone_settings(b, title="B2"))

        assert [m.title for m in result] == ["A", "B2", "C"]

    def test_edit_settings_rejects_inverted_range(self):
        with pytest.raises(ValidationError):
            ops.edit_milestone_settings(_milestone(), end_date="2025-12-01")

    def test_edit_settings_keeps_tasks(self):
        milestone = ops.add_task(_milestone(), models.new_task("A"))

        edited = ops.edit_milestone_settings(milestone, start_date="2026-01-15")

        assert edited.start_date == date(2026, 1, 15)
        assert edited.tasks == milestone.tasks

    def test_edit_task_fields(self):
        task = models.new_task("A", ["x"], "2026-02-01")

        edited = ops.edit_task(task, title="B", tags=["y", ""], clear_due_date=True)

        assert (edited.title, edited.tags, edited.due_date) == ("B", ("y",), None)

    def test_set_task_status_validates(self):
        with pytest.raises(ValidationError):
            ops.set_task_status(models.new_task("A"), "done")

    def test_subtask_lifecycle(self):
        task = models.new_task("A")
        subtask = models.new_subtask(task.id, "step")

        task = ops.add_subtask(task, subtask)
        task = ops.set_subtask_status(task, subtask.id, models.COMPLETE)
        assert ops.get_subtask(task, subtask.id).status == models.COMPLETE

        task = ops.remove_subtask(task, subtask.id)
        assert task.subtasks == ()

    def test_unknown_subtask_raises(self):
        with pytest.raises(NotFoundError):
            ops.set_subtask_status(models.new_task("A"), "nope", models.COMPLETE)

    def test_note_edit_keeps_created_at(self):
        note = models.new_note("first", "2026-01-02", created_at="2026-01-02T09:00:00+00:00")

        edited = ops.edit_note(note, content="second", on="2026-01-05")

        assert edited.content == "second"
        assert edited.date == date(2026, 1, 5)
        assert edited.created_at == note.created_at

    def test_note_edit_rejects_blank(self):
        with pytest.raises(ValidationError):
            ops.edit_note(models.new_note("x"), content="   ")

    def test_replace_notes(self):
        note = models.new_note("draft")
        task = ops.add_task_note(models.new_task("A"), note)
        milestone = ops.add_standalone_note(_milestone(), note)
        edited = ops.edit_note(note, content="final")

        assert ops.replace_task_note(task, edited).notes[0].content == "final"
        assert ops.replace_standalone_note(milestone, edited).standalone_notes[0].content == "final"

    def test_reorder_requires_full_permutation(self):
        milestone = ops.add_task(ops.add_task(_milestone(), models.new_task("A")), models.new_task("B"))
        ids = [task.id for task in milestone.tasks]

        assert [t.id for t in ops.reorder_tasks(milestone, ids[::-1]).tasks] == ids[::-1]
        with pytest.raises(ValidationError):
            ops.reorder_tasks(milestone, ids[:1])


class TestNormalize:
    """Loading repairs stored data instead of dropping it."""

    def test_repairs_and_sets_aside_entries(self):
        raw = [
            {"id": "a", "title": "A", "startDate": "2026-01-01", "endDate": "2026-01-02"},
            "junk",
            {"id": "b", "title": "no dates", "createdAt": "2026-05-01T10:00:00Z"},
            {"id": "a", "title": "dup", "startDate": "2026-01-01", "endDate": "2026-01-02"},
            {"id": "c", "title": "bad task", "startDate": "2026-01-01", "tasks": [3]},
        ]

        milestones, unreadable = ops.read_milestones(raw)

        assert [m.title for m in milestones] == ["A", "no dates", "dup"]
        assert milestones[0].id == "a"
        assert milestones[2].id not in ("a", "b")
        assert milestones[1].start_date == date(2026, 5, 1)
        assert unreadable == ["junk", raw[4]]

    def test_colliding_child_ids_are_reissued(self):
        task = {"id": "1735000000000", "title": "Book flights"}
        twin = {
            "id": "1735000000000",
            "title": "Pack bags",
            "subtasks": [{"id": "s", "title": "Socks"}, {"id": "s", "title": "Shoes"}],
            "notes": [{"id": "n", "content": "one", "date": "2026-01-02"}, {"id": "n", "content": "two", "date": "2026-01-03"}],
        }
        raw = [{"id": "m", "title": "Trip", "startDate": "2026-01-01", "endDate": "2026-02-01", "tasks": [task, twin]}]

        [milestone] = ops.normalize_milestones(raw)

        first, second = milestone.tasks
        assert first.id == "1735000000000"
        assert second.id != first.id
        assert [s.title for s in second.subtasks] == ["Socks", "Shoes"]
        assert len({s.id for s in second.subtasks}) == 2
        assert len({n.id for n in second.notes}) == 2

    def test_non_list_is_set_aside(self):
        assert ops.read_milestones({"milestones": []}) == ([], [{"milestones": []}])
        assert ops.read_milestones(None) == ([], [])


class TestMilestoneRepository:
    """Test cases for the stateful repository over the local cache."""

    def test_create_persists_immediately(self, repo, tmp_path):
        milestone = repo.create(_milestone())

        reloaded = MilestoneRepository(LocalCache(tmp_path / "cache.json"), "default").initialize()
        assert [m.id for m in reloaded.milestones] == [milestone.id]

    def test_order_is_insertion_order(self, repo):
        created = [repo.create(_milestone(title)).id for title in "ABC"]

        repo.update(ops.edit_milestone_settings(repo.get(created[0]), title="A2"))

        assert [m.id for m in repo.milestones] == created

    def test_listeners_fire_on_mutation(self, repo):
        calls = []
        repo.subscribe(lambda r: calls.append(len(r.milestones)))

        milestone = repo.create(_milestone())
        repo.modify(milestone.id, lambda m: ops.add_task(m, models.new_task("A")))

        assert calls == [1, 1]

    def test_replace_all_is_silent_by_default(self, repo):
        calls = []
        repo.subscribe(lambda r: calls.append(r))

        repo.replace_all([_milestone()])

        assert calls == []
        assert repo.has_data()

    def test_modify_cannot_change_id(self, repo):
        milestone = repo.create(_milestone())

        with pytest.raises(ValidationError):
            repo.modify(milestone.id, lambda m: _milestone())

    def test_modify_task(self, repo):
        task = models.new_task("A")
        milestone = repo.create(ops.add_task(_milestone(), task))

        updated = repo.modify_task(milestone.id, task.id, lambda t: ops.set_task_status(t, models.IN_PROGRESS))

        assert updated.status == models.IN_PROGRESS
        assert repo.get(milestone.id).tasks[0].status == models.IN_PROGRESS

    def test_cascade_delete(self, repo, cache):
        milestone = _milestone()
        for index in range(3):
            task = models.new_task(f"T{index}")
            for step in range(2):
                task = ops.add_subtask(task, models.new_subtask(task.id, f"S{step}"))
                task = ops.add_task_note(task, models.new_note(f"N{step}"))
            milestone = ops.add_task(milestone, task)
        milestone = ops.add_standalone_note(milestone, models.new_note("journal"))
        keep = repo.create(_milestone("Keep"))
        repo.create(milestone)
        repo.save_summary(milestone.id, "A good run.")
        repo.set_last_view(models.ViewState(models.VIEW_MILESTONE, milestone.id))

        repo.delete(milestone.id)

        assert [m.id for m in repo.milestones] == [keep.id]
        assert repo.summary(milestone.id) is None
        assert milestone.id not in str(cache.get(StorageKeys("default").milestones))
        assert repo.resolve_view() == models.DASHBOARD

    def test_delete_missing_is_noop(self, repo):
        repo.create(_milestone())

        repo.delete("missing")

        assert len(repo.milestones) == 1

    def test_get_missing_raises(self, repo):
        with pytest.raises(NotFoundError, match="not found"):
            repo.get("missing")

    def test_resolve_view_keeps_existing_milestone(self, repo):
        milestone = repo.create(_milestone())
        view = models.ViewState(models.VIEW_MILESTONE, milestone.id)

        repo.set_last_view(view)

        assert repo.resolve_view() == view

    def test_save_summary_for_missing_milestone_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.save_summary("missing", "text")

    def test_namespaces_are_isolated(self, cache):
        alice = MilestoneRepository(cache, "alice").initialize()
        bob = MilestoneRepository(cache, "bob").initialize()

        alice.create(_milestone())

        assert bob.load() == ()

    def test_to_document(self, repo):
        milestone = repo.create(_milestone())

        document = repo.to_document()

        assert document["milestones"][0]["id"] == milestone.id
        assert document["lastView"] == {"kind": "dashboard"}

    def test_colliding_task_ids_do_not_overwrite(self, cache):
        tasks = [
            {"id": "1735000000000", "title": "Book flights"},
            {"id": "1735000000000", "title": "Pack bags", "subtasks": [{"id": "s1", "title": "Socks"}]},
        ]
        cache.set(StorageKeys("default").milestones, [{"id": "m", "title": "Trip", "startDate": "2026-01-01", "tasks": tasks}])
        repo = MilestoneRepository(cache, "default").initialize()

        repo.modify_task("m", "1735000000000", lambda t: ops.set_task_status(t, models.COMPLETE))

        reloaded = MilestoneRepository(cache, "default").initialize().get("m")
        assert [(t.title, t.status) for t in reloaded.tasks] == [
            ("Book flights", models.COMPLETE),
            ("Pack bags", models.NOT_STARTED),
        ]
        assert reloaded.tasks[1].subtasks[0].title == "Socks"

    def test_reissued_ids_are_stable_across_loads(self, cache):
        dup = {"id": "x", "title": "X", "startDate": "2026-01-01"}
        cache.set(StorageKeys("default").milestones, [dup, dict(dup, title="Y")])

        first = MilestoneRepository(cache, "default").initialize().milestones
        second = MilestoneRepository(cache, "default").initialize().milestones

        assert [m.id for m in first] == [m.id for m in second]

    def test_typo_milestone_survives_the_next_write(self, cache):
        keys = StorageKeys("default")
        cache.set(
            keys.milestones,
            [
                {"id": "good", "title": "Good", "startDate": "2026-01-01", "endDate": "2026-01-31"},
                {"id": "typo", "title": "Typo", "startDate": "2026-02-30", "endDate": "2026-03-31"},
            ],
        )
        repo = MilestoneRepository(cache, "default").initialize()

        repo.create(_milestone("New"))

        stored = [item["id"] for item in cache.get(keys.milestones)]
        assert stored[:2] == ["good", "typo"]
        assert repo.get("typo").start_date == date(2026, 3, 31)

    def test_unreadable_entries_are_kept_aside(self, cache):
        keys = StorageKeys("default")
        broken = {"id": "broken", "title": "Broken", "startDate": "2026-01-01", "tasks": "not a list"}
        cache.set(keys.milestones, [broken, 42])
        repo = MilestoneRepository(cache, "default").initialize()

        repo.create(_milestone())
        MilestoneRepository(cache, "default").initialize()

        assert repo.unreadable == [broken, 42]
        assert cache.get(keys.unreadable) == [broken, 42]

    def test_mutations_mark_unsynced(self, repo):
        assert not repo.unsynced

        repo.create(_milestone())
        assert repo.unsynced

        repo.mark_synced()
        assert not repo.unsynced

    def test_replace_all_prunes_orphan_summaries(self, repo):
        gone = repo.create(_milestone("Gone"))
        kept = repo.create(_milestone("Kept"))
        repo.save_summary(gone.id, "Old news.")
        repo.save_summary(kept.id, "Still here.")

        repo.replace_all([kept])

        assert repo.summary(gone.id) is None
        assert repo.summary(kept.id) == "Still here."
