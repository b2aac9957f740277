# tests/test_file_utils.py
import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from lossy import file_utils
from lossy.errors import CodecError, ValidationError


def make_pixels(width=5, height=4):
    rng = np.random.default_rng(2)
    return rng.integers(0, 256, size=(width * height, 4)).astype(np.uint8), width, height


def write_png(path: Path, color=(10, 20, 30)):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (4, 4), color=color).save(path)


def test_encode_then_decode_keeps_pixels_and_metadata(tmp_path):
    pixels, width, height = make_pixels()
    metadata = {"User Note": "Test run", "Extra_Key": "Extra value", "1st": "x"}
    data = file_utils.encode_png(pixels, width, height, additional_metadata=metadata)

    path = tmp_path / "roundtrip.png"
    path.write_bytes(data)
    decoded, w, h = file_utils.decode_png(path)
    assert (w, h) == (width, height)
    np.testing.assert_array_equal(decoded, pixels)

    with Image.open(io.BytesIO(data)) as im:
        info = im.info
        assert info["lossypng:User_Note"] == "Test run"
        assert "lossypng:Extra_Key" in info
        assert "lossypng:_1st" in info


def test_decode_converts_rgb_to_rgba(tmp_path):
    path = tmp_path / "rgb.png"
    write_png(path, (1, 2, 3))
    pixels, w, h = file_utils.decode_png(path)
    assert pixels.shape == (16, 4)
    assert tuple(pixels[0]) == (1, 2, 3, 255)


def test_decode_missing_file_raises_codec_error(tmp_path):
    with pytest.raises(CodecError) as exc:
        file_utils.decode_png(tmp_path / "missing.png")
    assert "missing.png" in str(exc.value)


def test_decode_non_image_raises_codec_error(tmp_path):
    path = tmp_path / "not_an_image.png"
    path.write_text("definitely not a PNG")
    with pytest.raises(CodecError):
        file_utils.decode_png(path)


def test_encode_rejects_mismatched_dimensions():
    pixels, width, height = make_pixels()
    with pytest.raises(CodecError):
        file_utils.encode_png(pixels, width + 1, height)


def test_list_png_files_recursive_and_flat(tmp_path):
    write_png(tmp_path / "a.png")
    write_png(tmp_path / "b.APNG")
    write_png(tmp_path / "sub" / "c.png")
    (tmp_path / "notes.txt").write_text("skip me")

    assert file_utils.list_png_files(tmp_path) == [Path("a.png"), Path("b.APNG"), Path("sub/c.png")]
    assert file_utils.list_png_files(tmp_path, recursive=False) == [Path("a.png"), Path("b.APNG")]


def test_resolve_paths_mirrors_directory_layout(tmp_path):
    src = tmp_path / "src"
    write_png(src / "a.png")
    write_png(src / "nested" / "b.png")
    out = tmp_path / "out"

    inputs, outputs = file_utils.resolve_paths(src, out)
    assert inputs == [src / "a.png", src / "nested" / "b.png"]
    assert outputs == [out / "a.png", out / "nested" / "b.png"]


def test_resolve_paths_in_place_and_callable(tmp_path):
    a, b = tmp_path / "a.png", tmp_path / "b.png"
    inputs, outputs = file_utils.resolve_paths([a, b])
    assert outputs == inputs

    _, outputs = file_utils.resolve_paths([a, b], lambda p: p.with_name(p.stem + "-min.png"))
    assert outputs == [tmp_path / "a-min.png", tmp_path / "b-min.png"]


def test_resolve_paths_rejects_length_mismatch(tmp_path):
    with pytest.raises(ValidationError):
        file_utils.resolve_paths([tmp_path / "a.png", tmp_path / "b.png"], [tmp_path / "x.png"])


def test_check_inputs_and_output_dirs(tmp_path):
    existing = tmp_path / "here.png"
    write_png(existing)
    file_utils.check_inputs_exist([existing])
    with pytest.raises(ValidationError):
        file_utils.check_inputs_exist([existing, tmp_path / "gone.png"])

    target = tmp_path / "deep" / "er" / "out.png"
    file_utils.ensure_output_dirs([target])
    assert target.parent.is_dir()
