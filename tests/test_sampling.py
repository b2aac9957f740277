import numpy as np

from lossy.sampling import MAX_SAMPLES, max_samples_from_env, sample_indices


def test_empty_image_has_no_samples():
    assert len(sample_indices(0)) == 0


def test_small_image_is_sampled_completely():
    np.testing.assert_array_equal(sample_indices(10), np.arange(10))


def test_large_image_is_strided_and_capped():
    idx = sample_indices(100_000)
    assert len(idx) == MAX_SAMPLES
    assert idx[0] == 0
    assert np.all(np.diff(idx) == 2)


def test_stride_is_floor_of_total_over_cap():
    for total in (50_001, 75_000, 99_999, 100_001, 1_234_567):
        idx = sample_indices(total)
        stride = max(1, total // MAX_SAMPLES)
        np.testing.assert_array_equal(idx, np.arange(0, total, stride))
        assert idx[-1] < total


def test_image_between_one_and_two_caps_is_sampled_completely():
    assert len(sample_indices(75_000)) == 75_000
    assert len(sample_indices(99_999)) == 99_999


def test_sampling_is_deterministic():
    np.testing.assert_array_equal(sample_indices(777_777, 1000), sample_indices(777_777, 1000))


def test_env_override(monkeypatch):
    monkeypatch.setenv("LOSSYPNG_MAX_SAMPLES", "1234")
    assert max_samples_from_env() == 1234
    monkeypatch.setenv("LOSSYPNG_MAX_SAMPLES", "not-a-number")
    assert max_samples_from_env() == MAX_SAMPLES
    monkeypatch.delenv("LOSSYPNG_MAX_SAMPLES")
    assert max_samples_from_env() == MAX_SAMPLES
