import io

import numpy as np
import pytest
from PIL import Image

from cleancut.utils.arrays import min_max_scale, stack_images, to_uint8, to_unit_float
from cleancut.utils.images import concat_vertical, encode_png, from_array, open_image, resize, to_rgb


def test_to_uint8_clamps_instead_of_wrapping():
    values = np.array([-20.0, 0.0, 127.9, 255.0, 300.0, np.nan, np.inf])
    assert to_uint8(values).tolist() == [0, 0, 127, 255, 255, 0, 255]


def test_to_uint8_maps_booleans_to_full_range():
    assert to_uint8(np.array([True, False])).tolist() == [255, 0]


def test_to_unit_float_range():
    out = to_unit_float(np.array([0, 128, 255], dtype=np.uint8))
    assert out.dtype == np.float64
    assert out[0] == 0.0 and out[-1] == 1.0


def test_min_max_scale_constant_buffer_is_zero():
    assert not min_max_scale(np.full((3, 3), 7.0)).any()


def test_min_max_scale_spans_unit_interval():
    out = min_max_scale(np.array([[2.0, 4.0], [6.0, 10.0]]))
    assert out.min() == 0.0 and out.max() == 1.0


def test_stack_images_foreground_and_alpha():
    rgba = stack_images(np.zeros((4, 5, 3)), np.ones((4, 5)))
    assert rgba.shape == (4, 5, 4)
    assert (rgba[:, :, 3] == 1).all()
    with pytest.raises(ValueError):
        stack_images(np.zeros((4, 5, 3)), np.ones((5, 4)))


@pytest.mark.parametrize(
    "shape, mode",
    [((4, 6), "L"), ((4, 6, 1), "L"), ((4, 6, 3), "RGB"), ((4, 6, 4), "RGBA")],
)
def test_from_array_picks_mode(shape, mode):
    image = from_array(np.zeros(shape, dtype=np.float32))
    assert image.mode == mode
    assert image.size == (6, 4)


def test_from_array_rejects_odd_shapes():
    with pytest.raises(ValueError):
        from_array(np.zeros((2, 2, 2)))


def test_open_image_decodes_png():
    source = Image.new("RGB", (7, 3), (10, 20, 30))
    buffer = io.BytesIO()
    source.save(buffer, format="PNG")
    decoded = open_image(buffer.getvalue())
    assert decoded.size == (7, 3)
    assert decoded.getpixel((0, 0)) == (10, 20, 30)


def test_resize_is_noop_at_same_size():
    image = Image.new("L", (5, 5))
    assert resize(image, (5, 5)) is image
    assert resize(image, (10, 2)).size == (10, 2)


def test_to_rgb_converts_other_modes():
    assert to_rgb(Image.new("RGBA", (2, 2))).mode == "RGB"
    rgb = Image.new("RGB", (2, 2))
    assert to_rgb(rgb) is rgb


def test_concat_vertical_stacks_heights():
    top = Image.new("RGBA", (4, 3), (255, 0, 0, 255))
    bottom = Image.new("RGBA", (4, 5), (0, 0, 255, 255))
    stacked = concat_vertical([top, bottom])
    assert stacked.size == (4, 8)
    assert stacked.getpixel((0, 0)) == (255, 0, 0, 255)
    assert stacked.getpixel((0, 7)) == (0, 0, 255, 255)


def test_concat_vertical_requires_images():
    with pytest.raises(ValueError):
        concat_vertical([])


def test_encode_png_keeps_alpha():
    data = encode_png(Image.new("RGBA", (3, 3), (1, 2, 3, 4)))
    assert data.startswith(b"\x89PNG")
    assert Image.open(io.BytesIO(data)).getpixel((1, 1)) == (1, 2, 3, 4)
