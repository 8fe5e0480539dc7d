"""Provisioning record tests."""

import json

import pytest

from privacy_stack.errors import ConcurrentRunError
from privacy_stack.state import (
    COMPLETED,
    RUNNING,
    ProvisioningRecord,
    inputs_hash,
    load_record,
    run_lock,
    save_record,
)


class TestProvisioningRecord:

    def test_missing_file_gives_empty_record(self, tmp_path):
        assert load_record(tmp_path / "state.json").stages == {}

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "state" / "state.json"
        record = ProvisioningRecord()
        record.mark("tunnel", COMPLETED, inputs_hash({"a": 1}), server_public_key="abc")
        save_record(record, path)

        loaded = load_record(path)
        stage = loaded.get("tunnel")
        assert stage.status == COMPLETED
        assert stage.inputs == inputs_hash({"a": 1})
        assert stage.details == {"server_public_key": "abc"}
        assert json.loads(path.read_text())["version"] == 1

    def test_mark_replaces_previous_status(self):
        record = ProvisioningRecord()
        record.mark("resolver", RUNNING, "x")
        record.mark("resolver", COMPLETED, "x")
        assert record.get("resolver").status == COMPLETED

    def test_hash_ignores_key_order(self):
        assert inputs_hash({"a": 1, "b": 2}) == inputs_hash({"b": 2, "a": 1})
        assert inputs_hash({"a": 1}) != inputs_hash({"a": 2})

    @pytest.mark.parametrize("content", ["{not json", '{"version": 99, "stages": {}}'])
    def test_unusable_record_ignored(self, tmp_path, content):
        path = tmp_path / "state.json"
        path.write_text(content)
        assert load_record(path).stages == {}


class TestRunLock:

    def test_second_holder_refused(self, tmp_path):
        lock = tmp_path / ".lock"
        with run_lock(lock):
            with pytest.raises(ConcurrentRunError):
                with run_lock(lock):
                    pass

    def test_released_after_run(self, tmp_path):
        lock = tmp_path / ".lock"
        with run_lock(lock):
            pass
        with run_lock(lock):
            pass
