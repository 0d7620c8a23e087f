from model.preset import Preset

def test_preset_creation():
    p = Preset(name="Fat Pad")
    assert p.name == "Fat Pad"
    assert p.chunk is None
    assert not p.initialized

def test_preset_with_chunk_is_initialized():
    p = Preset(name="Lead", chunk=b"\x00\x01")
    assert p.initialized

def test_empty_chunk_still_counts_as_initialized():
    assert Preset(name="Blank", chunk=b"").initialized

def test_preset_slug_sanitizes_special_chars():
    p = Preset(name="Lead: Bright (Warm)")
    assert ":" not in p.slug
    assert "(" not in p.slug
    assert ")" not in p.slug
    assert p.slug

def test_preset_slug_empty_name_fallback():
    assert Preset(name="!!!").slug == "preset"
