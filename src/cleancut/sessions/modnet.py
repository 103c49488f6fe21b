from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np
from PIL import Image

from ..utils.arrays import to_uint8
from ..utils.images import resize
from .base import ModelSpec, PreprocessConfig

__all__ = ["MODNET_PREPROCESS", "decode_matte", "modnet_spec"]

# Inputs end up in [-1, 1].
MODNET_PREPROCESS = PreprocessConfig(
    mean=(0.5, 0.5, 0.5),
    std=(0.5, 0.5, 0.5),
    ref_size=512,
    scale_by_max=False,
)


def decode_matte(outputs: Sequence[np.ndarray], original_size: Tuple[int, int]) -> List[Image.Image]:
    matte = np.asarray(outputs[0], dtype=np.float32)[0, 0]
    matte = np.clip(np.nan_to_num(matte, nan=0.0, posinf=1.0, neginf=0.0), 0.0, 1.0)
    image = Image.fromarray(to_uint8(matte * 255))
    return [resize(image, original_size)]


def modnet_spec() -> ModelSpec:
    return ModelSpec(
        name="modnet_photographic_portrait_matting",
        preprocess=MODNET_PREPROCESS,
        postprocess=decode_matte,
    )
