"""Tests for the doing engine."""

import uuid
from datetime import date, datetime, time, timedelta

import pytest

from doing_log.engine import (
    DoingEngine,
    EntryNotFoundError,
    NoMatchingEntriesError,
    SectionError,
    resolve_time,
)
from doing_log.filtering import FilterSpec
from doing_log.matching import CaseSensitivity
from doing_log.models import DoingError, Entry

T1 = datetime(2025, 1, 1, 9, 0)
T2 = datetime(2025, 1, 1, 10, 0)
T3 = datetime(2025, 1, 1, 11, 0)


def descriptions(matches):
    return [entry.description for _, entry in matches]


class TestResolveTime:
    """Tests for resolve_time."""

    def test_none_is_now(self):
        assert abs(resolve_time(None) - datetime.now()) < timedelta(minutes=1)

    def test_datetime_truncated(self):
        assert resolve_time(datetime(2025, 1, 1, 9, 0, 42, 7)) == T1

    def test_time_is_today(self):
        assert resolve_time(time(9, 0)) == datetime.combine(date.today(), time(9, 0))

    def test_string(self):
        assert resolve_time("2025-01-01 09:00") == T1


class TestNow:
    """Tests for now."""

    def test_creates_file(self, engine, config):
        entry = engine.now("Writing tests @python")

        assert entry.description == "Writing tests"
        assert entry.tags == {"python": None}
        assert entry.section == "Currently"
        assert config.get_doing_file_path().exists()
        assert engine.get_entry(entry.id).description == "Writing tests"

    def test_back_and_note(self, engine):
        entry = engine.now("Reading", note="chapter 3", back=T1)
        stored = engine.get_entry(entry.id)
        assert stored.timestamp == T1
        assert stored.note == "chapter 3"

    def test_custom_section(self, engine):
        engine.now("Side project", section="Projects")
        assert engine.sections() == {"Currently": 0, "Projects": 1}

    def test_finish_last(self, engine):
        first = engine.now("First", back=T1)
        engine.now("Second", back=T2, finish_last=True)

        stored = engine.get_entry(first.id)
        assert stored.tags["done"] == "2025-01-01 10:00"

    def test_empty_text_rejected(self, engine):
        with pytest.raises(DoingError):
            engine.now("   @only_tags")


class TestLater:
    """Tests for later."""

    def test_goes_to_later_section(self, engine):
        entry = engine.later("Read paper", tags=["@reading", "prio(2)"])
        assert entry.section == "Later"
        assert entry.tags == {"reading": None, "prio": "2"}
        assert engine.sections()["Later"] == 1


class TestDone:
    """Tests for done."""

    def test_new_finished_entry(self, engine):
        entry = engine.done("Shipped release", back=T1, took="1h30m")
        assert entry.timestamp == T1
        assert entry.tags["done"] == "2025-01-01 10:30"

    def test_explicit_completion_time(self, engine):
        entry = engine.done("Meeting", back=T1, at=T3)
        assert entry.duration() == timedelta(hours=2)

    def test_took_without_back_ends_now(self, engine):
        entry = engine.done("Call", took=timedelta(minutes=30))
        assert entry.duration() == timedelta(minutes=30)
        assert abs(entry.done_at - datetime.now()) < timedelta(minutes=2)

    def test_archive(self, engine):
        entry = engine.done("Old thing", archive=True)
        assert engine.get_entry(entry.id).section == "Archive"

    def test_finishes_last_unfinished(self, engine):
        engine.now("First", back=T1)
        second = engine.now("Second", back=T2)

        entry = engine.done(took="15m")
        assert entry.id == second.id
        assert engine.get_entry(second.id).tags["done"] == "2025-01-01 10:15"

    def test_nothing_to_finish(self, engine):
        with pytest.raises(NoMatchingEntriesError):
            engine.done()


class TestFinish:
    """Tests for finish and cancel."""

    def test_finishes_newest(self, engine):
        first = engine.now("First", back=T1)
        second = engine.now("Second", back=T2)

        finished = engine.finish(at=T3)
        assert [e.id for e in finished] == [second.id]
        assert not engine.get_entry(first.id).is_done()
        assert engine.get_entry(second.id).done_at == T3

    def test_count_zero_finishes_all(self, engine):
        engine.now("First", back=T1)
        engine.now("Second", back=T2)
        assert len(engine.finish(count=0)) == 2
        assert engine.show(FilterSpec(unfinished=True)) == []

    def test_skips_finished_entries(self, engine):
        engine.now("First", back=T1)
        done = engine.done("Second", back=T2)
        finished = engine.finish()
        assert finished[0].id != done.id

    def test_took_is_relative_to_start(self, engine):
        entry = engine.now("First", back=T1)
        engine.finish(took="0:45")
        assert engine.get_entry(entry.id).duration() == timedelta(minutes=45)

    def test_with_spec(self, engine):
        tagged = engine.now("Tagged @client", back=T1)
        engine.now("Untagged", back=T2)
        finished = engine.finish(spec=FilterSpec(tags=["client"]))
        assert [e.id for e in finished] == [tagged.id]

    def test_remove(self, engine):
        entry = engine.done("Finished", back=T1)
        engine.finish(remove=True)
        assert not engine.get_entry(entry.id).is_done()

    def test_archive(self, engine):
        entry = engine.now("First", back=T1)
        engine.finish(archive=True)
        assert engine.get_entry(entry.id).section == "Archive"

    def test_cancel_has_no_date(self, engine):
        entry = engine.now("Abandoned", back=T1)
        engine.cancel()
        stored = engine.get_entry(entry.id)
        assert stored.is_done()
        assert stored.tags["done"] is None

    def test_nothing_to_finish(self, engine):
        engine.done("Already done")
        with pytest.raises(NoMatchingEntriesError):
            engine.finish()


class TestAgainAndReset:
    """Tests for again and reset."""

    def test_again_copies_without_done(self, engine):
        source = engine.done("Write report @work", back=T1, note="draft")
        entry = engine.again(back=T3)

        assert entry.id != source.id
        assert entry.description == "Write report"
        assert entry.tags == {"work": None}
        assert entry.note == "draft"
        assert entry.timestamp == T3
        assert len(engine.show()) == 2

    def test_again_to_other_section(self, engine):
        engine.now("Write report", back=T1)
        assert engine.again(section="Later").section == "Later"

    def test_again_with_spec(self, engine):
        engine.now("Alpha", back=T1)
        engine.now("Beta", back=T2)
        assert engine.again(spec=FilterSpec(search="alpha")).description == "Alpha"

    def test_reset(self, engine):
        engine.done("Report", back=T1)
        entry = engine.reset(back=T3)
        assert entry.timestamp == T3
        assert not entry.is_done()

    def test_reset_without_resume(self, engine):
        engine.done("Report", back=T1)
        assert engine.reset(back=T3, resume=False).is_done()

    def test_empty_file(self, engine):
        with pytest.raises(NoMatchingEntriesError):
            engine.again()


class TestTag:
    """Tests for tag."""

    def test_add(self, engine):
        entry = engine.now("Work", back=T1)
        engine.tag(["@client", "project(web)"])
        assert engine.get_entry(entry.id).tags == {"client": None, "project": "web"}

    def test_add_with_value(self, engine):
        entry = engine.now("Work", back=T1)
        engine.tag(["estimate"], value="3")
        assert engine.get_entry(entry.id).tags == {"estimate": "3"}

    def test_add_with_date(self, engine):
        entry = engine.now("Work", back=T1)
        engine.tag(["reviewed"], date=True)
        value = engine.get_entry(entry.id).tags["reviewed"]
        assert datetime.strptime(value, "%Y-%m-%d %H:%M")

    def test_count(self, engine):
        engine.now("One", back=T1)
        engine.now("Two", back=T2)
        engine.now("Three", back=T3)
        tagged = engine.tag(["x"], count=2)
        assert [e.description for e in tagged] == ["Three", "Two"]

    def test_remove_glob(self, engine):
        entry = engine.now("Work @project @proj_x @keep", back=T1)
        engine.tag(["proj*"], remove=True)
        assert engine.get_entry(entry.id).tags == {"keep": None}

    def test_remove_smart_case(self, engine):
        entry = engine.now("Work @Client @client2", back=T1)
        engine.tag(["client*"], remove=True)
        assert engine.get_entry(entry.id).tags == {}

    def test_remove_case_sensitive(self, engine):
        entry = engine.now("Work @Client", back=T1)
        engine.tag(["client"], remove=True, case=CaseSensitivity.CASE_SENSITIVE)
        assert engine.get_entry(entry.id).tags == {"Client": None}

    def test_remove_regex(self, engine):
        entry = engine.now("Work @a1 @a22 @b", back=T1)
        engine.tag([r"a\d+"], remove=True, regex=True)
        assert engine.get_entry(entry.id).tags == {"b": None}

    def test_rename(self, engine):
        entry = engine.now("Work @prj(web)", back=T1)
        engine.tag(["project"], rename="prj")
        assert engine.get_entry(entry.id).tags == {"project": "web"}

    def test_no_tags(self, engine):
        engine.now("Work")
        with pytest.raises(DoingError):
            engine.tag([])


class TestNote:
    """Tests for note."""

    def test_append(self, engine):
        entry = engine.now("Work", note="first")
        engine.note("second")
        assert engine.get_entry(entry.id).note == "first\nsecond"

    def test_replace(self, engine):
        entry = engine.now("Work", note="first")
        engine.note("second", append=False)
        assert engine.get_entry(entry.id).note == "second"

    def test_remove(self, engine):
        entry = engine.now("Work", note="first")
        engine.note(remove=True)
        assert engine.get_entry(entry.id).note is None

    def test_requires_text(self, engine):
        engine.now("Work")
        with pytest.raises(DoingError):
            engine.note()


class TestDelete:
    """Tests for delete."""

    def test_deletes_newest(self, engine):
        first = engine.now("First", back=T1)
        engine.now("Second", back=T2)

        removed = engine.delete()
        assert [e.description for e in removed] == ["Second"]
        assert [e.id for _, e in engine.show()] == [first.id]

    def test_count_and_spec(self, engine):
        engine.now("a @x", back=T1)
        engine.now("b @x", back=T2)
        engine.now("c", back=T3)
        engine.delete(FilterSpec(tags=["x"]), count=0)
        assert descriptions(engine.show()) == ["c"]


class TestArchive:
    """Tests for archive."""

    def test_moves_and_labels(self, engine):
        entry = engine.now("Work", back=T1)
        engine.later("Someday")

        moved = engine.archive()
        assert len(moved) == 2
        stored = engine.get_entry(entry.id)
        assert stored.section == "Archive"
        assert stored.tags["from"] == "Currently"
        assert engine.sections() == {"Currently": 0, "Archive": 2, "Later": 0}

    def test_no_label(self, engine):
        entry = engine.now("Work")
        engine.archive(label=False)
        assert "from" not in engine.get_entry(entry.id).tags

    def test_keep(self, engine):
        engine.now("One", back=T1)
        engine.now("Two", back=T2)
        engine.now("Three", back=T3)

        moved = engine.archive(keep=1)
        assert sorted(e.description for e in moved) == ["One", "Two"]
        assert descriptions(engine.show(FilterSpec(sections=["Currently"]))) == ["Three"]

    def test_custom_destination(self, engine):
        engine.now("Work")
        engine.archive(to="Logbook")
        assert engine.sections()["Logbook"] == 1

    def test_already_archived_entries_stay(self, engine):
        entry = engine.done("Old", archive=True)
        assert engine.archive() == []
        assert "from" not in engine.get_entry(entry.id).tags

    def test_with_spec(self, engine):
        engine.now("Keep")
        engine.now("Move @old")
        moved = engine.archive(FilterSpec(tags=["old"]))
        assert [e.description for e in moved] == ["Move"]


class TestIdEdits:
    """Tests for operations addressed by entry id."""

    def test_move(self, engine):
        entry = engine.now("Work")
        engine.move(entry.id, "Projects")
        assert engine.get_entry(entry.id).section == "Projects"

    def test_update_entry(self, engine):
        entry = engine.now("Work", note="n")
        engine.update_entry(entry.id, description="Better", note=None, timestamp=T1)
        stored = engine.get_entry(entry.id)
        assert stored.description == "Better"
        assert stored.note is None
        assert stored.timestamp == T1

    def test_update_unknown_field(self, engine):
        entry = engine.now("Work")
        with pytest.raises(ValueError):
            engine.update_entry(entry.id, id=uuid.uuid4())

    def test_update_rejects_unreadable_tag_names(self, engine):
        entry = engine.now("Work @ok")
        with pytest.raises(ValueError):
            engine.update_entry(entry.id, tags={"high-priority": None})
        assert engine.get_entry(entry.id).tags == {"ok": None}

    def test_toggle_done(self, engine):
        entry = engine.now("Work")
        assert engine.toggle_done(entry.id).is_done()
        assert not engine.toggle_done(entry.id).is_done()

    def test_delete_entry(self, engine):
        entry = engine.now("Work")
        assert engine.delete_entry(entry.id).id == entry.id
        assert engine.show() == []

    @pytest.mark.parametrize("operation", ["get_entry", "toggle_done", "delete_entry"])
    def test_unknown_id(self, engine, operation):
        with pytest.raises(EntryNotFoundError):
            getattr(engine, operation)(uuid.uuid4())

    def test_unknown_id_move_and_update(self, engine):
        with pytest.raises(EntryNotFoundError):
            engine.move(uuid.uuid4(), "Archive")
        with pytest.raises(EntryNotFoundError):
            engine.update_entry(uuid.uuid4(), description="x")


class TestSections:
    """Tests for section management."""

    def test_sections_on_empty_file(self, engine):
        assert engine.sections() == {"Currently": 0}

    def test_add_section(self, engine):
        engine.add_section("Projects")
        assert engine.sections() == {"Currently": 0, "Projects": 0}

    def test_add_existing_section(self, engine):
        engine.add_section("Projects")
        with pytest.raises(SectionError):
            engine.add_section("Projects")

    def test_remove_section(self, engine):
        engine.now("Work", section="Projects")
        removed = engine.remove_section("Projects")
        assert [e.description for e in removed] == ["Work"]
        assert engine.sections() == {"Currently": 0}

    def test_remove_section_to_archive_prepends(self, engine):
        engine.done("Archived first", archive=True)
        engine.now("Work", section="Projects")
        engine.remove_section("Projects", archive=True)

        archive = engine.load().sections["Archive"]
        assert [e.description for e in archive] == ["Work", "Archived first"]
        assert archive[0].section == "Archive"

    def test_remove_missing_section(self, engine):
        with pytest.raises(SectionError):
            engine.remove_section("Nope")

    def test_remove_default_section(self, engine):
        with pytest.raises(SectionError):
            engine.remove_section("Currently")


class TestViews:
    """Tests for read-only views."""

    def test_show_is_chronological(self, engine):
        engine.now("Two", back=T2)
        engine.now("One", back=T1, section="Other")
        assert descriptions(engine.show()) == ["One", "Two"]

    def test_show_count_keeps_newest(self, engine):
        engine.now("One", back=T1)
        engine.now("Two", back=T2)
        engine.now("Three", back=T3)
        assert descriptions(engine.show(count=2)) == ["Two", "Three"]

    def test_show_uses_configured_case(self, config):
        config.search_case = CaseSensitivity.CASE_SENSITIVE
        engine = DoingEngine(config)
        engine.now("Bug fix")
        assert engine.grep("bug") == []

    def test_grep(self, engine):
        engine.now("Fix bug", back=T1)
        engine.now("Write docs", back=T2, note="about the bug")
        engine.now("Lunch", back=T3)
        assert descriptions(engine.grep("bug")) == ["Fix bug", "Write docs"]
        assert descriptions(engine.grep("bug", invert=True)) == ["Lunch"]

    def test_last(self, engine):
        assert engine.last() is None
        engine.now("One", back=T1)
        engine.now("Two", back=T2)
        section, entry = engine.last()
        assert (section, entry.description) == ("Currently", "Two")

    def test_recent(self, engine):
        for i in range(5):
            engine.now(f"Entry {i}", back=T1 + timedelta(minutes=i))
        engine.later("Elsewhere")
        assert descriptions(engine.recent(2, section="Currently")) == ["Entry 3", "Entry 4"]

    def test_today_and_yesterday(self, engine):
        today_entry = engine.now("Today")
        yesterday = datetime.combine(date.today() - timedelta(days=1), time(12, 0))
        engine.now("Yesterday", back=yesterday)
        engine.now("Long ago", back=T1)

        assert [e.id for _, e in engine.today()] == [today_entry.id]
        assert descriptions(engine.yesterday()) == ["Yesterday"]

    def test_on(self, engine):
        engine.now("Morning", back=T1)
        engine.now("Next day", back=T1 + timedelta(days=1))
        assert descriptions(engine.on("2025-01-01")) == ["Morning"]
        assert descriptions(engine.on(date(2025, 1, 2))) == ["Next day"]

    def test_on_rejects_time(self, engine):
        with pytest.raises(DoingError):
            engine.on("8am")

    def test_since(self, engine):
        engine.now("Old", back=T1)
        engine.now("New", back=T3)
        assert descriptions(engine.since(T2)) == ["New"]
        assert descriptions(engine.since("2025-01-01 10:00")) == ["New"]

    def test_tag_counts(self, engine):
        engine.now("a @x @y", back=T1)
        engine.now("b @x", back=T2)
        engine.done("c @y", back=T3)
        assert engine.tag_counts() == {"done": 1, "x": 2, "y": 2}
        assert engine.tag_counts(FilterSpec(unfinished=True)) == {"x": 2, "y": 1}


class TestConcurrentWriters:
    """Whole-file rewrites without locking."""

    def test_last_writer_wins(self, config):
        """Known limitation: a save overwrites changes made since the load."""
        first = DoingEngine(config)
        second = DoingEngine(config)

        stale = first.load()
        second.now("Written by second")

        stale.add_entry(Entry("Written by first"))
        first.save(stale)

        assert descriptions(first.show()) == ["Written by first"]
