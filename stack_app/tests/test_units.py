import numpy as np
import pytest

from stack_app.engine.units import (
    YUnits,
    absorbance_to_transmittance,
    classify_units,
    is_absorbance,
    is_transmittance,
    to_display_units,
    transmittance_to_absorbance,
)


@pytest.mark.parametrize(
    "label, expected",
    [
        ("ABSORBANCE", YUnits.ABSORBANCE),
        ("absorbance (AU)", YUnits.ABSORBANCE),
        ("  Transmittance ", YUnits.TRANSMITTANCE),
        ("% TRANSMISSION", YUnits.TRANSMITTANCE),
        ("", YUnits.TRANSMITTANCE),
        (None, YUnits.TRANSMITTANCE),
        ("ABSORBANCES", YUnits.UNKNOWN),
        ("COUNTS", YUnits.UNKNOWN),
    ],
)
def test_classify_units(label, expected):
    assert classify_units(label) is expected


def test_is_helpers_follow_classification():
    assert is_absorbance("Absorbance")
    assert not is_absorbance("TRANSMITTANCE")
    assert is_transmittance(None)
    assert not is_transmittance("KUBELKA-MUNK")


def test_absorbance_transmittance_round_trip():
    t = np.linspace(0.001, 1.0, 50)
    back = absorbance_to_transmittance(transmittance_to_absorbance(t))
    np.testing.assert_allclose(back, t, rtol=1e-12)


def test_absorbance_to_transmittance_clamps_non_positive_values():
    assert absorbance_to_transmittance(0.0) == 1.0
    assert absorbance_to_transmittance(-2.0) == 1.0
    assert absorbance_to_transmittance(1.0) == pytest.approx(0.1)
    assert isinstance(absorbance_to_transmittance(2.0), float)


def test_transmittance_to_absorbance_reads_percent_and_floors_zero():
    assert transmittance_to_absorbance(50.0) == pytest.approx(np.log10(2.0))
    assert transmittance_to_absorbance(0.0) == pytest.approx(10.0)
    np.testing.assert_allclose(transmittance_to_absorbance([1.0, 0.1]), [0.0, 1.0], atol=1e-12)


def test_to_display_units_converts_percent_transmittance():
    y = np.array([100.0, 10.0])
    out = to_display_units(y, "% TRANSMITTANCE", "absorbance")
    np.testing.assert_allclose(out, [0.0, 1.0], atol=1e-12)


def test_to_display_units_converts_absorbance_source():
    out = to_display_units([0.0, 1.0, 2.0], "ABSORBANCE", YUnits.TRANSMITTANCE)
    np.testing.assert_allclose(out, [1.0, 0.1, 0.01])


def test_to_display_units_treats_unknown_labels_as_transmittance():
    out = to_display_units([0.1], "COUNTS", "absorbance")
    np.testing.assert_allclose(out, [1.0])


def test_to_display_units_returns_a_copy_when_units_match():
    y = np.array([0.2, 0.4])
    out = to_display_units(y, "TRANSMITTANCE", "transmittance")
    out[0] = 9.0
    assert y[0] == 0.2


def test_to_display_units_rejects_unknown_target():
    with pytest.raises(ValueError):
        to_display_units([0.5], "TRANSMITTANCE", "counts")
