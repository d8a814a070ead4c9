"""Tests for the path, git, index and API locations."""

import tarfile

import pytest
import semantic_version

from fakes import FakeGitTransport, FakeIndexTransport, build_archive, write_package
from larder.config import Config
from larder.constants import LocationKind
from larder.errors import NotFound, ValidationFailure
from larder.locations.archive import extract_archive, package_root
from larder.locations.factory import LOCATION_TYPES, build_location
from larder.locations.git import GitLocation
from larder.locations.path import PathLocation
from larder.locations.remote import ApiLocation, IndexLocation
from larder.locations.specs import ApiCredentials, ApiSpec, GitSpec, IndexSpec, PathSpec
from larder.versioning import parse_constraint

REPO = "git://example.com/acme/tools.git"
REVISION = "0123456789abcdef0123456789abcdef01234567"


class TestPathLocation:
    """Packages wrapped in place."""

    def test_fetch_wraps_without_copying(self, tmp_path, store):
        root = write_package(tmp_path / "app", "app", "0.3.0")
        pkg = PathLocation(PathSpec(str(root))).fetch("app", parse_constraint(None), store)
        assert pkg.path == root
        assert store.packages() == []

    def test_missing_directory(self, tmp_path, store):
        with pytest.raises(NotFound):
            PathLocation(PathSpec(str(tmp_path / "nope"))).fetch("app", parse_constraint(None), store)

    def test_wrong_name(self, tmp_path, store):
        root = write_package(tmp_path / "app", "other", "0.3.0")
        with pytest.raises(ValidationFailure):
            PathLocation(PathSpec(str(root))).load("app")

    def test_unsatisfied_constraint(self, tmp_path, store):
        root = write_package(tmp_path / "app", "app", "0.3.0")
        with pytest.raises(NotFound):
            PathLocation(PathSpec(str(root))).fetch("app", parse_constraint(">= 1.0"), store)


class TestIndexLocation:
    """Highest satisfying version, downloaded once."""

    def test_fetch_picks_highest_satisfying(self, store):
        transport = FakeIndexTransport({"nginx": {"1.0.0": {}, "1.2.5": {}, "1.3.0": {}}})
        pkg = IndexLocation(IndexSpec(), transport).fetch("nginx", parse_constraint("~> 1.2.0"), store)

        assert pkg.version == semantic_version.Version("1.2.5")
        assert pkg.path == store.path_for("nginx", "1.2.5")
        assert pkg.origin == IndexSpec()
        assert transport.downloads == [("nginx", "1.2.5")]

    def test_second_fetch_served_from_store(self, store):
        transport = FakeIndexTransport({"nginx": {"1.0.0": {}}})
        IndexLocation(IndexSpec(), transport).fetch_version("nginx", semantic_version.Version("1.0.0"), store)
        IndexLocation(IndexSpec(), transport).fetch_version("nginx", semantic_version.Version("1.0.0"), store)
        assert transport.downloads == [("nginx", "1.0.0")]

    def test_unknown_name(self, store):
        transport = FakeIndexTransport({})
        with pytest.raises(NotFound) as excinfo:
            IndexLocation(IndexSpec(), transport).versions("nginx")
        assert "nginx" in str(excinfo.value)

    def test_no_satisfying_version(self, store):
        transport = FakeIndexTransport({"nginx": {"1.0.0": {}}})
        with pytest.raises(NotFound):
            IndexLocation(IndexSpec(), transport).fetch("nginx", parse_constraint(">= 2.0"), store)

    def test_dependencies_are_parsed(self, store):
        transport = FakeIndexTransport({"nginx": {"1.0.0": {"ohai": "~> 2.0", "build-essential": ">= 1.1"}}})
        pkg = IndexLocation(IndexSpec(), transport).fetch("nginx", parse_constraint(None), store)
        assert [str(d) for d in pkg.dependencies] == ["build-essential (>= 1.1)", "ohai (~> 2.0)"]

    def test_store_copy_from_another_origin_is_not_reused(self, tmp_path, store):
        src = write_package(tmp_path / "nginx", "nginx", "1.0.0", files={"from-api.txt": "x"})
        store.insert("nginx", "1.0.0", src, ApiSpec("https://pkgs.example.com"))
        transport = FakeIndexTransport({"nginx": {"1.0.0": {}}})

        pkg = IndexLocation(IndexSpec(), transport).fetch_version("nginx", semantic_version.Version("1.0.0"), store)

        assert transport.downloads == [("nginx", "1.0.0")]
        assert pkg.origin == IndexSpec()
        assert not (pkg.path / "from-api.txt").exists()


class TestGitLocation:
    """Revision-keyed caching."""

    def test_double_fetch_is_served_from_store(self, store):
        transport = FakeGitTransport({REPO: (REVISION, "tools", "1.0.0", {})})
        first = GitLocation(GitSpec(REPO), transport).fetch("tools", parse_constraint(None), store)
        second = GitLocation(GitSpec(REPO), transport).fetch("tools", parse_constraint(None), store)

        assert transport.clones == 1
        assert first.checksum == second.checksum
        assert first.revision == second.revision == REVISION
        assert second.origin == GitSpec(REPO, None, REVISION)
        assert second.path == store.path_for("tools", REVISION)

    def test_git_directory_is_not_stored(self, store):
        transport = FakeGitTransport({REPO: (REVISION, "tools", "1.0.0", {})})
        pkg = GitLocation(GitSpec(REPO), transport).fetch("tools", parse_constraint(None), store)
        assert not (pkg.path / ".git").exists()

    def test_locked_revision_skips_ls_remote(self, store):
        transport = FakeGitTransport({REPO: (REVISION, "tools", "1.0.0", {})})
        GitLocation(GitSpec(REPO, None, REVISION), transport).fetch("tools", parse_constraint(None), store)
        assert transport.ls_remote_calls == 0
        assert transport.clones == 1

    def test_same_commit_through_another_ref_keeps_its_own_origin(self, store):
        transport = FakeGitTransport({REPO: (REVISION, "tools", "1.0.0", {})})
        GitLocation(GitSpec(REPO, "main"), transport).fetch("tools", parse_constraint(None), store)
        pkg = GitLocation(GitSpec(REPO, "v1.0.0"), transport).fetch("tools", parse_constraint(None), store)

        assert transport.clones == 1
        assert pkg.origin == GitSpec(REPO, "v1.0.0", REVISION)


class TestApiLocation:
    """Private API uses the same archive flow."""

    def test_fetch(self, store):
        transport = FakeIndexTransport({"private": {"2.1.0": {}}})
        spec = ApiSpec("https://pkgs.example.com", ApiCredentials("ci", "token"))
        pkg = ApiLocation(spec, transport).fetch("private", parse_constraint("~> 2.0"), store)
        assert pkg.origin == ApiSpec("https://pkgs.example.com")
        assert pkg.version == semantic_version.Version("2.1.0")

    def test_stored_apart_from_index_copies(self, store):
        index = FakeIndexTransport({"private": {"2.1.0": {}}})
        api = FakeIndexTransport({"private": {"2.1.0": {}}})
        version = semantic_version.Version("2.1.0")
        from_index = IndexLocation(IndexSpec(), index).fetch_version("private", version, store)
        from_api = ApiLocation(ApiSpec("https://pkgs.example.com"), api).fetch_version("private", version, store)

        assert api.downloads == [("private", "2.1.0")]
        assert from_index.path == store.path_for("private", "2.1.0")
        assert from_api.path != from_index.path
        assert from_api.origin == ApiSpec("https://pkgs.example.com")
        assert [p.origin for p in store.packages("private")].count(IndexSpec()) == 1


class TestArchive:
    """Archive extraction and package root detection."""

    def test_wrapped_archive(self, tmp_path):
        archive = build_archive(tmp_path / "nginx.tar.gz", "nginx", "1.0.0")
        out = tmp_path / "out"
        out.mkdir()
        extract_archive(archive, out)
        assert package_root(out, "nginx") == out / "nginx"

    def test_flat_archive(self, tmp_path):
        write_package(tmp_path / "out", "nginx", "1.0.0")
        assert package_root(tmp_path / "out", "nginx") == tmp_path / "out"

    def test_archive_without_descriptor(self, tmp_path):
        (tmp_path / "out" / "junk").mkdir(parents=True)
        with pytest.raises(NotFound):
            package_root(tmp_path / "out", "nginx")

    def test_corrupt_archive(self, tmp_path):
        bad = tmp_path / "bad.tar.gz"
        bad.write_bytes(b"not a tarball")
        with pytest.raises(NotFound):
            extract_archive(bad, tmp_path)

    def test_escaping_member_is_refused(self, tmp_path):
        evil = tmp_path / "evil.tar.gz"
        payload = tmp_path / "payload.txt"
        payload.write_text("x", encoding="utf-8")
        with tarfile.open(evil, "w:gz") as tf:
            tf.add(payload, arcname="../escaped.txt")
        out = tmp_path / "out"
        out.mkdir()
        with pytest.raises(NotFound):
            extract_archive(evil, out)
        assert not (tmp_path / "escaped.txt").exists()


class TestFactory:
    """Dispatch by location kind."""

    def test_every_kind_has_a_location(self):
        assert set(LOCATION_TYPES) == set(LocationKind)

    def test_api_specs_get_configured_credentials(self, tmp_path):
        config = Config(store_path=tmp_path, api_client_name="ci", api_token="s3cr3t")
        location = build_location(ApiSpec("https://pkgs.example.com"), config)
        assert location.spec.credentials == ApiCredentials("ci", "s3cr3t")

    def test_git_timeout_from_config(self, tmp_path):
        config = Config(store_path=tmp_path, git_timeout=12)
        location = build_location(GitSpec(REPO), config)
        assert location.transport.timeout == 12
