from __future__ import annotations

import numpy as np
import torch
import torch.nn.functional as F
from PIL import Image
from torchvision.transforms import functional as TF

__all__ = ["post_process", "post_process_mask"]

MIDPOINT = 127


def _open(mask_tensor: torch.Tensor) -> torch.Tensor:
    # max_pool2d pads with -inf, so the border never erodes or dilates anything.
    eroded = -F.max_pool2d(-mask_tensor, kernel_size=3, stride=1, padding=1)
    return F.max_pool2d(eroded, kernel_size=3, stride=1, padding=1)


def post_process(mask: np.ndarray) -> np.ndarray:
    """
    Clean a segmentation mask into a smooth binary one.

    Morphological opening with a 3x3 element removes specks, a 5x5 Gaussian
    (sigma 2) rounds the boundary, rethresholding at the midpoint brings every
    pixel back to 0 or 255, and a final opening drops what the blur left thin.
    A mask that is already binary and unchanged by opening is returned as is,
    so running this on its own output changes nothing.
    See https://www.sciencedirect.com/science/article/pii/S2352914821000757
    """
    mask_array = np.asarray(mask, dtype=np.float32)
    mask_tensor = torch.from_numpy(mask_array.copy()).unsqueeze(0).unsqueeze(0)

    with torch.inference_mode():
        opened = _open(mask_tensor)

        is_binary = bool(((mask_tensor == 0) | (mask_tensor == 255)).all())
        if is_binary and torch.equal(opened, mask_tensor):
            return mask_array.astype(np.uint8)

        # Reflect padding needs at least 3 pixels per side.
        if min(opened.shape[-2:]) >= 3:
            opened = TF.gaussian_blur(opened, kernel_size=[5, 5], sigma=[2.0, 2.0])

        rebinarized = (opened >= MIDPOINT).float() * 255.0
        cleaned = _open(rebinarized)[0, 0].numpy()

    return cleaned.astype(np.uint8)


def post_process_mask(mask: Image.Image) -> Image.Image:
    return Image.fromarray(post_process(np.asarray(mask.convert("L"))))
