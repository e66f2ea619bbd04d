import pytest

from target_capture.core.calibration import (
    compute_scale,
    convert_shots,
    inches_to_pixels,
    is_reasonable_scale,
    marker_display_size,
    pixel_distance,
    scale_from_preset,
    to_inches,
    to_pixels,
)
from target_capture.core.errors import InvalidCalibration
from target_capture.core.models import CalibrationReference, PixelPoint, PixelShot, ScaleFactor, TargetPreset


def _reference(x1: float, y1: float, x2: float, y2: float, length: float) -> CalibrationReference:
    return CalibrationReference(
        pixel_points=(PixelPoint(x=x1, y=y1), PixelPoint(x=x2, y=y2)),
        physical_length_inches=length,
    )


def test_compute_scale_divides_pixel_distance_by_length() -> None:
    scale = compute_scale(_reference(10, 10, 40, 50, 2.0))

    assert scale.pixels_per_inch == pytest.approx(25.0)
    assert scale.calibration_type == "custom"


@pytest.mark.parametrize("length", [0.0, -1.0])
def test_compute_scale_rejects_non_positive_length(length: float) -> None:
    with pytest.raises(InvalidCalibration):
        compute_scale(_reference(0, 0, 100, 0, length))


def test_compute_scale_rejects_coincident_points() -> None:
    with pytest.raises(InvalidCalibration):
        compute_scale(_reference(42, 17, 42, 17, 1.0))


def test_invalid_calibration_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        compute_scale(_reference(0, 0, 0, 0, 1.0))


def test_scale_from_preset_uses_known_dimension() -> None:
    preset = TargetPreset(id="b8-repair", name="B-8", known_dimension_inches=5.5)

    scale = scale_from_preset(preset, 550.0)

    assert scale.pixels_per_inch == pytest.approx(100.0)
    assert scale.calibration_type == "preset"


def test_scale_from_preset_rejects_bad_inputs() -> None:
    preset = TargetPreset(id="broken", name="Broken", known_dimension_inches=0)
    with pytest.raises(InvalidCalibration):
        scale_from_preset(preset, 100.0)

    preset = TargetPreset(id="plate", name="Plate", known_dimension_inches=9)
    with pytest.raises(InvalidCalibration):
        scale_from_preset(preset, 0.0)


def test_to_inches_inverts_y_axis() -> None:
    scale = ScaleFactor(pixels_per_inch=25.0)
    poa = PixelPoint(x=100, y=100)

    shot = to_inches(PixelShot(x=125, y=50, sequence_number=3), poa, scale)

    assert shot.x_inches == pytest.approx(1.0)
    assert shot.y_inches == pytest.approx(2.0)
    assert shot.sequence_number == 3


def test_convert_shots_preserves_order_and_sequence() -> None:
    scale = ScaleFactor(pixels_per_inch=10.0)
    shots = [PixelShot(x=0, y=0, sequence_number=1), PixelShot(x=20, y=30, sequence_number=2)]

    converted = convert_shots(shots, PixelPoint(x=10, y=10), scale)

    assert [shot.sequence_number for shot in converted] == [1, 2]
    assert (converted[0].x_inches, converted[0].y_inches) == pytest.approx((-1.0, 1.0))
    assert (converted[1].x_inches, converted[1].y_inches) == pytest.approx((1.0, -2.0))


def test_helpers() -> None:
    assert pixel_distance(PixelPoint(x=0, y=0), PixelPoint(x=3, y=4)) == pytest.approx(5.0)
    assert inches_to_pixels(2.0, ScaleFactor(pixels_per_inch=40.0)) == pytest.approx(80.0)
    assert is_reasonable_scale(50.0)
    assert not is_reasonable_scale(2.0)
    assert not is_reasonable_scale(900.0)


def test_to_pixels_places_offset_back_on_image() -> None:
    poa = PixelPoint(x=400, y=300)
    scale = ScaleFactor(pixels_per_inch=50.0)
    shot = PixelShot(x=475, y=200, sequence_number=1)

    offset = to_inches(shot, poa, scale)
    point = to_pixels(offset.x_inches, offset.y_inches, poa, scale)

    assert (offset.x_inches, offset.y_inches) == pytest.approx((1.5, 2.0))
    assert (point.x, point.y) == pytest.approx((475.0, 200.0))


def test_marker_display_size_scales_inversely_with_zoom() -> None:
    assert marker_display_size(24.0, 2.0) == pytest.approx(12.0)
    assert marker_display_size(24.0, 0.5) == pytest.approx(48.0)
    with pytest.raises(ValueError):
        marker_display_size(24.0, 0.0)
