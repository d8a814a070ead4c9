"""Tests for lockfile reconciliation and installation."""

import json

import pytest
import semantic_version

from fakes import FakeGitTransport, FakeIndexTransport, location_factory, write_package
from larder.errors import ConfigurationError, NoSolution, OutdatedSourceConflict
from larder.installer import Installer, LockState, Reconciler
from larder.locations.specs import ApiSpec, GitSpec, IndexSpec
from larder.lockfile import LockEntry, Lockfile, read_lockfile, write_lockfile
from larder.manifest import Manifest
from larder.resolver import Downloader

PRIVATE = "https://private.example.com"

CATALOG = {
    "A": {"1.0.0": {}, "1.2.0": {}, "2.0.0": {"B": "~> 1.0"}},
    "B": {"0.9.0": {}, "1.0.0": {}, "1.1.0": {}, "2.0.0": {}},
    "C": {"1.0.0": {}},
}


def manifest(*records):
    return Manifest.from_records(list(records), locations=[{"index": IndexSpec().endpoint}])


def installer(tmp_path, store, config, man, index, git=None, api=None):
    downloader = Downloader(store, man.default_locations, config, location_factory(index=index, git=git, api=api))
    return Installer(man, tmp_path / "Larderfile.lock", config=config, store=store, downloader=downloader)


def locked_versions(lockfile):
    return {e.name: str(e.locked_version) for e in lockfile}


class TestUnlocked:
    """First install."""

    def test_resolves_and_writes_lockfile(self, tmp_path, store, config):
        man = manifest({"name": "A"})
        result = installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install()

        assert result.state is LockState.UNLOCKED
        assert locked_versions(result.lockfile) == {"A": "2.0.0", "B": "1.1.0"}
        on_disk = read_lockfile(tmp_path / "Larderfile.lock")
        assert on_disk.manifest_digest == man.digest
        assert locked_versions(on_disk) == {"A": "2.0.0", "B": "1.1.0"}

    def test_failure_writes_no_lockfile(self, tmp_path, store, config):
        man = manifest({"name": "A", "constraint": ">= 5.0"})
        with pytest.raises(NoSolution):
            installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install()
        assert not (tmp_path / "Larderfile.lock").exists()


class TestLockedClean:
    """Unchanged manifest: no resolution."""

    def test_fast_path_contacts_nothing(self, tmp_path, store, config):
        man = manifest({"name": "A"})
        installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install()

        index = FakeIndexTransport(CATALOG)
        result = installer(tmp_path, store, config, man, index).install()

        assert result.state is LockState.LOCKED_CLEAN
        assert index.calls == 0
        assert locked_versions(result.lockfile) == {"A": "2.0.0", "B": "1.1.0"}

    def test_fetches_only_missing_packages(self, tmp_path, store, config):
        man = manifest({"name": "A"})
        installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install()
        store.clear()

        index = FakeIndexTransport(CATALOG)
        installer(tmp_path, store, config, man, index).install()

        assert index.index_calls == []
        assert sorted(index.downloads) == [("A", "2.0.0"), ("B", "1.1.0")]

    def test_git_entry_reuses_locked_revision(self, tmp_path, store, config):
        uri = "git://example.com/acme/tools.git"
        git = FakeGitTransport({uri: ("e" * 40, "tools", "0.1.0", {})})
        man = manifest({"name": "tools", "git": uri})
        installer(tmp_path, store, config, man, FakeIndexTransport({}), git).install()

        result = installer(tmp_path, store, config, man, FakeIndexTransport({}), git).install()
        assert result.lockfile.get("tools").origin.revision == "e" * 40
        assert git.ls_remote_calls == 1
        assert git.clones == 1

    def test_path_version_is_read_live(self, tmp_path, store, config):
        app = write_package(tmp_path / "app", "app", "0.1.0")
        man = manifest({"name": "app", "path": str(app)})
        installer(tmp_path, store, config, man, FakeIndexTransport({})).install()

        write_package(app, "app", "0.2.0")
        result = installer(tmp_path, store, config, man, FakeIndexTransport({})).install()
        assert result.state is LockState.LOCKED_CLEAN
        assert locked_versions(result.lockfile) == {"app": "0.2.0"}


class TestLockedStale:
    """Changed manifest: reuse what still fits."""

    def test_outdated_lock_conflicts_without_remote_access(self, tmp_path, store, config):
        write_lockfile(
            Lockfile.from_entries("old", [LockEntry("A", semantic_version.Version("1.2.0"), IndexSpec())]),
            tmp_path / "Larderfile.lock",
        )
        index = FakeIndexTransport(CATALOG)
        man = manifest({"name": "A", "constraint": ">= 1.3.0"})

        with pytest.raises(OutdatedSourceConflict) as excinfo:
            installer(tmp_path, store, config, man, index).install()

        assert index.calls == 0
        assert excinfo.value.name == "A"
        assert "1.2.0" in str(excinfo.value)
        assert ">= 1.3.0" in str(excinfo.value)
        assert read_lockfile(tmp_path / "Larderfile.lock").manifest_digest == "old"

    def test_satisfied_locks_are_kept(self, tmp_path, store, config):
        installer(tmp_path, store, config, manifest({"name": "A", "constraint": "~> 1.0"}),
                  FakeIndexTransport(CATALOG)).install()
        newer = {**CATALOG, "A": {**CATALOG["A"], "1.3.0": {}}}

        man = manifest({"name": "A", "constraint": "~> 1.0"}, {"name": "C"})
        result = installer(tmp_path, store, config, man, FakeIndexTransport(newer)).install()

        assert result.state is LockState.LOCKED_STALE
        assert locked_versions(result.lockfile) == {"A": "1.2.0", "C": "1.0.0"}

    def test_removed_names_are_dropped(self, tmp_path, store, config):
        installer(tmp_path, store, config, manifest({"name": "A"}, {"name": "C"}),
                  FakeIndexTransport(CATALOG)).install()
        result = installer(tmp_path, store, config, manifest({"name": "C"}), FakeIndexTransport(CATALOG)).install()
        assert locked_versions(result.lockfile) == {"C": "1.0.0"}

    def test_reconciler_pins_locked_versions(self):
        lock = Lockfile.from_entries("old", [LockEntry("A", semantic_version.Version("1.2.0"), IndexSpec())])
        plan = Reconciler(manifest({"name": "A", "constraint": ">= 1.0"}), lock).plan()
        assert plan.state is LockState.LOCKED_STALE
        assert [str(r) for r in plan.requirements] == ["A (= 1.2.0)"]
        assert plan.requirements[0].location == IndexSpec()

    def test_changed_location_is_resolved_again(self, tmp_path):
        app = write_package(tmp_path / "app", "app", "0.1.0")
        lock = Lockfile.from_entries("old", [LockEntry("app", semantic_version.Version("9.9.9"), IndexSpec())])
        plan = Reconciler(manifest({"name": "app", "path": str(app)}), lock).plan()
        assert str(plan.requirements[0].constraint) == ">= 0.0.0"

    def test_dropped_git_source_falls_back_to_default_locations(self):
        origin = GitSpec("git://example.com/tools.git", None, "e" * 40)
        lock = Lockfile.from_entries("old", [LockEntry("tools", semantic_version.Version("0.1.0"), origin)])
        plan = Reconciler(manifest({"name": "tools"}), lock).plan()
        assert plan.requirements[0].location is None
        assert plan.requirements[0].constraint.is_any

    def test_lock_from_removed_default_location_is_resolved_again(self):
        mirror = IndexSpec("https://mirror.example.com/api/v1")
        lock = Lockfile.from_entries("old", [LockEntry("A", semantic_version.Version("1.2.0"), mirror)])
        plan = Reconciler(manifest({"name": "A", "constraint": ">= 1.0"}), lock).plan()
        assert plan.requirements[0].location is None
        assert str(plan.requirements[0].constraint) == ">= 1.0.0"

    def test_api_pin_does_not_reuse_index_copy(self, tmp_path, store, config):
        installer(tmp_path, store, config, manifest({"name": "A", "constraint": "= 1.0.0"}),
                  FakeIndexTransport(CATALOG)).install()

        api = FakeIndexTransport({"A": {"1.0.0": {}}})
        man = manifest({"name": "A", "api": PRIVATE})
        result = installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG), api=api).install()

        assert api.downloads == [("A", "1.0.0")]
        assert result.lockfile.get("A").origin == ApiSpec(PRIVATE)
        assert store.get("A", "1.0.0").origin == IndexSpec()

    def test_api_lock_is_kept_on_next_change(self, tmp_path, store, config):
        api = FakeIndexTransport({"A": {"1.0.0": {}}})
        installer(tmp_path, store, config, manifest({"name": "A", "api": PRIVATE}),
                  FakeIndexTransport(CATALOG), api=api).install()

        api = FakeIndexTransport({"A": {"1.0.0": {}, "1.1.0": {}}})
        man = manifest({"name": "A", "api": PRIVATE}, {"name": "C"})
        result = installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG), api=api).install()

        assert locked_versions(result.lockfile) == {"A": "1.0.0", "C": "1.0.0"}
        assert result.lockfile.get("A").origin == ApiSpec(PRIVATE)
        assert api.calls == 0


class TestGroupsAndVendoring:
    """Group filters and vendoring."""

    def test_except_groups(self, tmp_path, store, config):
        man = manifest({"name": "A", "constraint": "~> 1.0"}, {"name": "C", "groups": ["test"]})
        result = installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install(except_groups=["test"])
        assert locked_versions(result.lockfile) == {"A": "1.2.0"}
        assert result.lockfile.manifest_digest != man.digest

    def test_only_groups(self, tmp_path, store, config):
        man = manifest({"name": "A"}, {"name": "C", "groups": ["test"]})
        result = installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install(only_groups=["test"])
        assert locked_versions(result.lockfile) == {"C": "1.0.0"}

    def test_filtered_lock_is_reconciled_not_reused(self, tmp_path, store, config):
        man = manifest({"name": "A", "constraint": "~> 1.0"}, {"name": "C", "groups": ["test"]})
        installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install(except_groups=["test"])
        result = installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install()
        assert result.state is LockState.LOCKED_STALE
        assert locked_versions(result.lockfile) == {"A": "1.2.0", "C": "1.0.0"}

    def test_both_filters_rejected(self, tmp_path, store, config):
        man = manifest({"name": "A"})
        with pytest.raises(ConfigurationError):
            installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install(
                except_groups=["a"], only_groups=["b"]
            )

    def test_vendor_copies_packages(self, tmp_path, store, config):
        vendor_dir = tmp_path / "vendor"
        (vendor_dir / "stale").mkdir(parents=True)
        man = manifest({"name": "A"})
        result = installer(tmp_path, store, config, man, FakeIndexTransport(CATALOG)).install(vendor_path=vendor_dir)

        assert result.vendor_path == vendor_dir.resolve()
        assert sorted(p.name for p in vendor_dir.iterdir()) == ["A", "B"]
        meta = json.loads((vendor_dir / "A" / "metadata.json").read_text(encoding="utf-8"))
        assert meta["version"] == "2.0.0"
        assert not (vendor_dir / "A" / ".larder-origin.json").exists()
        assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".vendor-")] == []
