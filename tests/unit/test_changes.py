"""Tests for arkive.core.changes: select_changes."""

from arkive.core.changes import is_changed, select_changes
from arkive.core.models import FileRecord, MetadataIndex


def _rec(name: str, mtime: int, size: int = 10) -> FileRecord:
    return FileRecord(f"/src/{name}", name, size, mtime)


class TestSelectChanges:
    def test_no_baseline_selects_everything(self):
        current = [_rec("a", 1), _rec("b", 2)]
        assert select_changes(current, None).records == current

    def test_new_file_selected(self):
        baseline = MetadataIndex.from_records([_rec("a", 1)], "/src")
        changes = select_changes([_rec("a", 1), _rec("b", 1)], baseline)
        assert [r.relative_path for r in changes] == ["b"]

    def test_newer_file_selected(self):
        baseline = MetadataIndex.from_records([_rec("a", 100)], "/src")
        changes = select_changes([_rec("a", 101)], baseline)
        assert len(changes) == 1

    def test_equal_time_excluded(self):
        baseline = MetadataIndex.from_records([_rec("a", 100)], "/src")
        assert len(select_changes([_rec("a", 100, size=999)], baseline)) == 0

    def test_older_time_excluded(self):
        baseline = MetadataIndex.from_records([_rec("a", 100)], "/src")
        assert len(select_changes([_rec("a", 50)], baseline)) == 0

    def test_order_preserved(self):
        current = [_rec("c", 5), _rec("a", 5), _rec("b", 5)]
        baseline = MetadataIndex.from_records([], "/src")
        assert [r.relative_path for r in select_changes(current, baseline)] == ["c", "a", "b"]

    def test_total_size(self):
        changes = select_changes([_rec("a", 1, 100), _rec("b", 1, 50)], None)
        assert changes.total_size == 150

    def test_every_selected_record_is_new_or_newer(self):
        baseline_records = [_rec(f"f{i}", i * 10) for i in range(20)]
        baseline = MetadataIndex.from_records(baseline_records, "/src")
        current = [_rec(f"f{i}", i * 10 + (i % 3) - 1) for i in range(25)]

        for record in select_changes(current, baseline):
            previous = baseline.get(record.path)
            assert previous is None or record.modified_time > previous.modified_time
        for record in current:
            if record not in select_changes(current, baseline).records:
                assert not is_changed(record, baseline)
