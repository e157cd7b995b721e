"""Tests for the versioned baseline store."""

import json
import threading

import pytest

from matrixqa.baseline.store import BaselineStore
from matrixqa.errors import BaselineConflict
from matrixqa.models.baseline import MissingBaseline
from matrixqa.models.device import DeviceProfile

from conftest import RED, make_screenshot


class TestBaselineStore:
    def test_missing_baseline(self, baseline_store, pixel):
        result = baseline_store.get("login", pixel)
        assert result is MissingBaseline
        assert not result

    def test_approve_and_get_latest(self, baseline_store, pixel, white, red_patch):
        first = baseline_store.approve("login", pixel, white, approver="alice")
        second = baseline_store.approve("login", pixel, red_patch, approver="bob")
        assert (first.release_version, second.release_version) == ("v1", "v2")
        assert baseline_store.get("login", pixel) == second
        assert baseline_store.get("login", pixel, "v1") == first
        assert baseline_store.get("login", pixel, "v9") is MissingBaseline

    def test_keys_are_independent_per_profile(self, baseline_store, pixel, iphone, white):
        baseline_store.approve("login", pixel, white, approver="alice")
        assert baseline_store.get("login", iphone) is MissingBaseline
        assert baseline_store.get("home", pixel) is MissingBaseline

    def test_reused_release_version_conflicts(self, baseline_store, pixel, white, red_patch):
        baseline_store.approve("login", pixel, white, approver="alice", release_version="2.3.0")
        with pytest.raises(BaselineConflict):
            baseline_store.approve("login", pixel, red_patch, approver="bob", release_version="2.3.0")
        assert baseline_store.get("login", pixel).image == white

    def test_approval_never_mutates_earlier_versions(self, baseline_store, pixel, white, red_patch):
        v1 = baseline_store.approve("login", pixel, white, approver="alice")
        baseline_store.approve("login", pixel, red_patch, approver="bob")
        assert baseline_store.get("login", pixel, "v1") == v1
        assert [b.release_version for b in baseline_store.list_versions("login", pixel)] == ["v2", "v1"]

    def test_approver_required(self, baseline_store, pixel, white):
        with pytest.raises(ValueError):
            baseline_store.approve("login", pixel, white, approver="")

    def test_concurrent_approvals_get_distinct_versions(self, baseline_store, pixel, white):
        errors = []

        def approve():
            try:
                baseline_store.approve("login", pixel, white, approver="ci")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=approve) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        versions = [b.release_version for b in baseline_store.list_versions("login", pixel)]
        assert not errors
        assert len(versions) == len(set(versions)) == 8

    def test_profiles_with_lossy_slugs_do_not_share_baselines(self, baseline_store, white):
        spaced = DeviceProfile(family="Galaxy S24", os_version="14")
        dashed = DeviceProfile(family="Galaxy-S24", os_version="14")
        baseline_store.approve("home", spaced, white, approver="alice")
        assert baseline_store.get("home", dashed) is MissingBaseline
        assert baseline_store.keys() == [("home", spaced)]


class TestBaselinePersistence:
    def test_round_trip(self, tmp_path, pixel, red_patch):
        store = BaselineStore(tmp_path / "baselines")
        approved = store.approve("login", pixel, red_patch, approver="alice", release_version="1.0")

        registry = json.loads((tmp_path / "baselines" / "registry.json").read_text())
        entry = registry["baselines"][f"login__{pixel.key}"][0]
        assert entry["image_path"] == f"images/login/{pixel.key}/1.0.png"

        reloaded = BaselineStore(tmp_path / "baselines").get("login", pixel)
        assert reloaded.release_version == "1.0"
        assert reloaded.image.pixels == red_patch.pixels
        assert reloaded.image_hash == approved.image_hash

    def test_missing_image_is_skipped(self, tmp_path, pixel, white):
        store = BaselineStore(tmp_path)
        store.approve("login", pixel, white, approver="alice")
        (tmp_path / "images" / "login" / pixel.key / "v1.png").unlink()
        assert BaselineStore(tmp_path).get("login", pixel) is MissingBaseline

    def test_existing_image_file_is_never_overwritten(self, tmp_path, pixel, white):
        target = tmp_path / "images" / "login" / pixel.key / "v1.png"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"keep")
        with pytest.raises(BaselineConflict):
            BaselineStore(tmp_path).approve("login", pixel, make_screenshot(blocks=[(0, 0, 1, 1, RED)]),
                                            approver="alice")
        assert target.read_bytes() == b"keep"

    def test_lossy_names_are_kept_apart_on_disk(self, tmp_path, white, red_patch):
        spaced = DeviceProfile(family="Galaxy S24", os_version="14")
        dashed = DeviceProfile(family="Galaxy-S24", os_version="14")
        store = BaselineStore(tmp_path)
        store.approve("home", spaced, white, approver="alice")
        store.approve("home", dashed, red_patch, approver="alice")
        store.approve("a/b", dashed, white, approver="alice")
        store.approve("a-b", dashed, red_patch, approver="alice")

        reloaded = BaselineStore(tmp_path)
        assert reloaded.get("home", spaced).image.pixels == white.pixels
        assert reloaded.get("home", dashed).image.pixels == red_patch.pixels
        assert reloaded.get("a/b", dashed).image.pixels == white.pixels
        assert reloaded.get("a-b", dashed).image.pixels == red_patch.pixels

    def test_concurrent_approvals_of_distinct_keys_all_persist(self, tmp_path, white):
        store = BaselineStore(tmp_path)
        errors = []

        def approve(worker):
            try:
                for i in range(10):
                    profile = DeviceProfile(family=f"Device {worker}", os_version=str(i))
                    store.approve("login", profile, white, approver="ci")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=approve, args=(w,)) for w in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        registry = json.loads((tmp_path / "registry.json").read_text())
        assert len(registry["baselines"]) == 80
        assert len(BaselineStore(tmp_path).keys()) == 80
