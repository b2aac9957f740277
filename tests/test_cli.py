# tests/test_cli.py
import subprocess
import sys
from pathlib import Path
from PIL import Image, ImageDraw

REPO_ROOT = Path(__file__).resolve().parent.parent
CLI = str(REPO_ROOT / "lossypng.py")


def create_dummy_image(path: Path):
    img = Image.new("RGB", (128, 128), color=(150, 120, 200))
    draw = ImageDraw.Draw(img)
    draw.rectangle([(20, 20), (80, 80)], fill=(200, 50, 50))
    draw.ellipse([(50, 50), (110, 110)], fill=(50, 200, 50))
    img.save(path)


def run_cli(*args):
    return subprocess.run(
        [sys.executable, CLI, *args],
        capture_output=True,
        text=True,
        cwd=REPO_ROOT,
    )


def test_lossypng_cli_lossy_to_output(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    output_image = tmp_path / "dummy_output.png"

    result = run_cli(str(input_image), "--output", str(output_image), "--lossy", "2", "--preset", "fast")

    assert result.returncode == 0, f"CLI failed: {result.stderr}"
    assert output_image.exists()
    assert "Completed" in result.stdout


def test_lossypng_cli_invalid_level():
    result = run_cli("missing.png", "--level", "9")
    assert result.returncode == 1
    assert "level" in result.stdout.lower()


def test_lossypng_cli_unknown_preset(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    result = run_cli(str(input_image), "--preset", "ultra")
    assert result.returncode == 1
    assert "Unknown preset" in result.stdout


def test_lossypng_cli_help_output():
    result = run_cli("--help")
    assert result.returncode == 0
    assert "usage:" in result.stdout.lower()


def test_lossypng_cli_debug_prints_probes_and_summary(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    output_image = tmp_path / "dummy_output.png"

    result = run_cli(str(input_image), "-o", str(output_image), "--lossy", "2", "--debug")

    assert result.returncode == 0, f"CLI failed: {result.stderr}"
    assert "colours: dE" in result.stdout
    assert " -> " in result.stdout and "(" in result.stdout
    assert "Completed" in result.stdout
