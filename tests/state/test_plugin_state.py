import threading
import time
import numpy as np
import pytest
from model.bank import PresetBank
from state.byte_chunk import ByteChunk
from state.codec import StateCodec, make_version
from state.errors import NoCurrentPreset, Truncated
from state.params import Parameter, ParameterTable


def _signals(state):
    received = {"program": 0, "params": []}
    state.program_changed.connect(lambda: received.__setitem__("program", received["program"] + 1))
    state.parameter_changed.connect(lambda idx, n: received["params"].append((idx, n)))
    return received


def test_version_reporting(make_state):
    state = make_state(codec=StateCodec(make_version(1, 2, 3)))
    assert state.plugin_version == 0x00010203
    assert state.version_string() == "v1.2.3"
    assert state.version_decimal() == 10203


def test_serialize_unserialize_state(make_state):
    state = make_state()
    state.table.apply([0.1, 0.2, 0.3])
    chunk = ByteChunk()
    assert state.serialize_state(chunk)

    other = make_state()
    received = _signals(other)
    assert other.unserialize_state(chunk, 0) == chunk.size
    assert list(other.table.snapshot()) == pytest.approx([0.1, 0.2, 0.3], abs=1e-9)
    assert received["program"] == 1


def test_failed_unserialize_does_not_notify(make_state):
    state = make_state()
    state.table.apply([0.1, 0.2, 0.3])
    chunk = ByteChunk()
    state.serialize_state(chunk)
    chunk.resize(chunk.size - 1)

    other = make_state()
    received = _signals(other)
    with pytest.raises(Truncated):
        other.unserialize_state(chunk, 0)
    assert list(other.table.snapshot()) == [0.0, 0.5, 1.0]
    assert received["program"] == 0


def test_compare_state(make_state):
    state = make_state()
    chunk = ByteChunk(b"\xff\xff")
    state.serialize_state(chunk)
    data = chunk.to_bytes()
    assert state.compare_state(data, 2)
    assert not state.compare_state(data, 0)
    state.table.set_value(1, 0.75)
    assert not state.compare_state(data, 2)


def test_compare_state_short_candidate(make_state):
    state = make_state()
    chunk = ByteChunk()
    state.serialize_state(chunk)
    assert not state.compare_state(chunk.to_bytes()[:-1])


def test_set_parameter_from_ui_notifies_once(make_state):
    state = make_state()
    received = _signals(state)
    state.set_parameter_from_ui(1, 0.25)
    assert state.table.value(1) == 0.25
    assert received["params"] == [(1, 0.25)]
    assert received["program"] == 0


def test_named_params_example(make_state):
    state = make_state()
    state.presets.make_preset_from_named_params("P1", [(1, 0.25)])
    received = _signals(state)
    assert state.restore_preset("P1")
    assert list(state.table.snapshot()) == [0.0, 0.25, 1.0]
    assert received["program"] == 1


def test_restore_missing_preset_does_not_notify(make_state):
    state = make_state()
    received = _signals(state)
    assert not state.restore_preset("nope")
    assert not state.restore_preset(3)
    assert received["program"] == 0


def test_restore_is_idempotent(make_state):
    state = make_state()
    state.presets.make_preset("A", [0.3, 0.6, 0.9])
    state.restore_preset(0)
    once = state.table.snapshot()
    state.restore_preset(0)
    assert np.array_equal(state.table.snapshot(), once)


def test_modify_current_preset(make_state):
    state = make_state()
    with pytest.raises(NoCurrentPreset):
        state.modify_current_preset()
    state.presets.make_default_preset()
    state.restore_preset(0)
    state.table.set_value(0, 0.8)
    state.modify_current_preset("Edited")
    state.table.set_value(0, 0.0)
    assert state.restore_preset("Edited")
    assert state.table.value(0) == 0.8


def test_store_current_state_adds_preset_when_none_active(make_state):
    state = make_state()
    state.table.set_value(2, 0.5)
    state.store_current_state("Saved")
    assert state.presets.current_index == 0
    assert state.presets.current_preset.name == "Saved"
    state.store_current_state("Renamed")
    assert len(state.presets) == 1
    assert state.presets.name(0) == "Renamed"


def test_ensure_default_preset(make_state):
    state = make_state()
    state.ensure_default_preset()
    state.ensure_default_preset()
    assert len(state.presets) == 1
    assert state.presets.name(0) == "Preset 1"


def test_reset_to_defaults_notifies(make_state):
    state = make_state()
    state.table.apply([1.0, 1.0, 0.0])
    received = _signals(state)
    state.reset_to_defaults()
    assert list(state.table.snapshot()) == [0.0, 0.5, 1.0]
    assert received["program"] == 1


def test_restore_corrupt_preset_raises_without_notifying(make_state):
    state = make_state()
    state.presets.make_preset("Full", [0.2, 0.2, 0.2])
    state.presets.make_preset_from_blob("Cut", state.presets["Full"].chunk[:-1])
    received = _signals(state)
    with pytest.raises(Truncated):
        state.restore_preset("Cut")
    assert list(state.table.snapshot()) == [0.0, 0.5, 1.0]
    assert state.presets.current_index == -1
    assert received["program"] == 0


def test_nan_in_chunk_restores_default(make_state):
    state = make_state()
    chunk = ByteChunk()
    state.codec.init_chunk_with_version(chunk)
    for v in (float("nan"), 0.3, float("nan")):
        chunk.put_double(v)
    state.unserialize_state(chunk, 0)
    assert list(state.table.snapshot()) == [0.0, 0.3, 1.0]


def test_dump_preset_src_code(tmp_path, make_state):
    state = make_state()
    state.set_parameter_from_ui(0, 0.5)
    state.store_current_state("Half")
    path = tmp_path / "half.py"
    state.dump_preset_src_code(path, ["GAIN", "MIX", "LEVEL"])
    assert path.read_text().splitlines() == [
        "bank.make_preset_from_named_params('Half', [",
        "    (GAIN, 0.5),",
        "    (MIX, 0.5),",
        "    (LEVEL, 1.0),",
        "])",
    ]


def test_dumped_blobs_recreate_presets(tmp_path, make_state):
    source = make_state()
    source.presets.make_preset("A", [0.1, 0.2, 0.3])
    source.presets.make_preset("B", [0.4, 0.5, 0.6])
    path = tmp_path / "bank.py"
    source.dump_bank_blob(path)

    target = make_state()
    exec(path.read_text(), {"bank": target.presets})
    assert list(target.presets) == list(source.presets)


def test_dump_preset_blob_without_current_preset(tmp_path, make_state):
    state = make_state()
    state.table.apply([0.7, 0.7, 0.7])
    path = tmp_path / "blob.py"
    state.dump_preset_blob(path)

    target = make_state()
    exec(path.read_text(), {"bank": target.presets})
    assert target.presets.names() == ["Dump"]
    assert target.restore_preset("Dump")
    assert list(target.table.snapshot()) == pytest.approx([0.7, 0.7, 0.7])


class SlowTable(ParameterTable):
    """Sleeps after every write so a reader can try to slip in mid-restore."""

    def _assign(self, idx, value):
        super()._assign(idx, value)
        time.sleep(0.0005)


def test_audio_reader_never_sees_torn_restore():
    table = SlowTable()
    for i in range(8):
        table.add(Parameter(f"p{i}", 0.5, 0.0, 1.0))
    bank = PresetBank(table, StateCodec())
    bank.make_preset("low", [0.0] * 8)
    bank.make_preset("high", [1.0] * 8)

    torn = []
    stop = threading.Event()

    def audio_reader():
        while not stop.is_set():
            values = table.snapshot()
            if len(set(values.tolist())) != 1:
                torn.append(values)

    reader = threading.Thread(target=audio_reader, daemon=True)
    reader.start()
    try:
        for i in range(20):
            assert bank.restore_preset(i % 2)
    finally:
        stop.set()
        reader.join(timeout=5)
    assert torn == []


def test_current_index_moves_with_restored_values():
    table = SlowTable()
    for i in range(4):
        table.add(Parameter(f"p{i}", 0.5, 0.0, 1.0))
    bank = PresetBank(table, StateCodec())
    bank.make_preset("low", [0.0] * 4)
    bank.make_preset("high", [1.0] * 4)
    bank.restore_preset(0)

    mismatched = []
    stop = threading.Event()

    def observer():
        while not stop.is_set():
            with table.lock:
                idx = bank.current_index
                value = table.value(0)
            if value != float(idx):
                mismatched.append((idx, value))

    reader = threading.Thread(target=observer, daemon=True)
    reader.start()
    try:
        for i in range(1, 21):
            assert bank.restore_preset(i % 2)
    finally:
        stop.set()
        reader.join(timeout=5)
    assert mismatched == []
