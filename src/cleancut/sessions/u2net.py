from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np
from PIL import Image

from ..utils.arrays import min_max_scale, to_uint8
from ..utils.images import resize
from .base import ModelSpec, PreprocessConfig

__all__ = ["U2NET_PREPROCESS", "decode_saliency", "u2net_spec", "u2netp_spec"]

U2NET_PREPROCESS = PreprocessConfig(
    mean=(0.485, 0.456, 0.406),
    std=(0.229, 0.224, 0.225),
    size=(320, 320),
)


def decode_saliency(outputs: Sequence[np.ndarray], original_size: Tuple[int, int]) -> List[Image.Image]:
    """
    Turn the first U2-Net side output into an ``L`` mask at ``original_size``.

    The prediction is min-max scaled per image, so the strongest response is
    always 255.
    """
    pred = np.asarray(outputs[0])[0, 0]
    pred = min_max_scale(pred)
    mask = Image.fromarray(to_uint8(pred * 255))
    return [resize(mask, original_size)]


def u2net_spec() -> ModelSpec:
    return ModelSpec(name="u2net", preprocess=U2NET_PREPROCESS, postprocess=decode_saliency)


def u2netp_spec() -> ModelSpec:
    return ModelSpec(name="u2netp", preprocess=U2NET_PREPROCESS, postprocess=decode_saliency)
