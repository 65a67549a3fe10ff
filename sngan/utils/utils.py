# utils.py
import torch
import torchvision.utils as vutils


# -------------------------------------------------------
# Latent noise
# -------------------------------------------------------
def sample_noise(batch_size, latent_size, device="cpu"):
    """Fresh i.i.d. N(0, 1) latent batch of shape (batch_size, latent_size)"""
    return torch.randn(batch_size, latent_size, device=device)


def sample_interpolation_noise(latent_size, rows=8, cols=8, device="cpu"):
    """
    Linear interpolations between pairs of latent vectors.
    Row i walks from start_i towards end_i in `cols` steps.
    Returns (rows * cols, latent_size).
    """
    start = sample_noise(rows, latent_size, device).unsqueeze(1)
    end = sample_noise(rows, latent_size, device).unsqueeze(1)
    rates = torch.arange(cols, device=device, dtype=start.dtype).view(1, cols, 1) / cols
    return (start - rates * (start - end)).reshape(-1, latent_size)


# -------------------------------------------------------
# Image grids
# -------------------------------------------------------
def make_image_grid(images, nrow=8):
    """
    Tile a batch in [-1, 1] into one image in [0, 1].
    Args:
        images (Tensor): shape (B, C, H, W), B divisible by nrow
    Returns:
        Tensor: shape (C, rows * H, nrow * W)
    """
    if images.size(0) % nrow != 0:
        raise ValueError(f"Batch size {images.size(0)} is not divisible by grid width {nrow}")
    grid = vutils.make_grid(images.detach().cpu(), nrow=nrow, padding=0)
    grid = (grid + 1) / 2
    return grid.clamp(0, 1)

