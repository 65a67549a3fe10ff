"""
Building layers shared by the generator and discriminator:
normalization / activation selectors, resizing, minibatch stddev
"""

import torch
import torch.nn as nn
import torch.nn.functional as F

from sngan.models.spectral_norm import sn_conv2d, sn_conv_transpose2d

NORM_METHODS = ("none", "batch", "instance", "pixel")
ACTIVATIONS = ("relu", "leaky_relu", "elu")
UPSAMPLE_METHODS = ("nearest", "bilinear", "depth_to_space", "stride")
DOWNSAMPLE_METHODS = ("avg_pool", "stride", "nearest", "bilinear")


# -------- Normalization -------- #
class PixelNorm(nn.Module):
    """Unit mean-square channel vector at every pixel (https://arxiv.org/abs/1710.10196)"""

    def __init__(self, eps=1e-8):
        super().__init__()
        self.eps = eps

    def forward(self, x):
        return x * torch.rsqrt(torch.mean(x * x, dim=1, keepdim=True) + self.eps)


class InstanceNorm(nn.Module):
    """
    Divides each sample and channel by its spatial standard deviation
    (https://arxiv.org/abs/1607.08022). The mean is not subtracted.
    """

    def __init__(self, eps=1e-8):
        super().__init__()
        self.eps = eps

    def forward(self, x):
        var = x.var(dim=(2, 3), keepdim=True, unbiased=False)
        return x * torch.rsqrt(var + self.eps)


def normalization(method, num_features, eps=1e-8):
    """Normalization layer for `method`, fixed for the layer's lifetime"""
    if method == "none":
        return nn.Identity()
    if method == "batch":
        return nn.BatchNorm2d(num_features, eps=eps)
    if method == "instance":
        return InstanceNorm(eps)
    if method == "pixel":
        return PixelNorm(eps)
    raise ValueError(f"Unknown normalization method '{method}', expected one of {NORM_METHODS}")


def activation(method):
    if method == "relu":
        return nn.ReLU()
    if method == "leaky_relu":
        return nn.LeakyReLU(0.2)
    if method == "elu":
        return nn.ELU()
    raise ValueError(f"Unknown activation '{method}', expected one of {ACTIVATIONS}")


# -------- Resizing -------- #
def depth_to_space(x, block_size):
    """
    [B, C, H, W] -> [B, C / r^2, H * r, W * r]

    Channels are read as (row offset, column offset, depth), the same
    layout as TensorFlow's depth_to_space.
    """
    b, c, h, w = x.shape
    r = block_size
    if c % (r * r) != 0:
        raise ValueError(f"Channel count {c} is not divisible by block_size^2 = {r * r}")
    depth = c // (r * r)

    x = x.reshape(b, r, r, depth, h, w)
    x = x.permute(0, 3, 4, 1, 5, 2)  # [B, depth, H, r, W, r]
    return x.reshape(b, depth, h * r, w * r)


def space_to_depth(x, block_size):
    """Inverse of depth_to_space"""
    b, c, h, w = x.shape
    r = block_size
    if h % r != 0 or w % r != 0:
        raise ValueError(f"Spatial size {h}x{w} is not divisible by block_size {r}")

    x = x.reshape(b, c, h // r, r, w // r, r)
    x = x.permute(0, 3, 5, 1, 2, 4)  # [B, r, r, C, H/r, W/r]
    return x.reshape(b, r * r * c, h // r, w // r)


def resize2x_bilinear(x):
    # autograd supplies the adjoint of bilinear interpolation
    return F.interpolate(x, scale_factor=2, mode="bilinear", align_corners=True)


def resize2x_nearest(x):
    return F.interpolate(x, scale_factor=2, mode="nearest")


class UpSamplingConv2d(nn.Module):
    """Convolution combined with a 2x spatial upsample"""

    def __init__(self, in_channels, out_channels, kernel_size, method, spectral_norm=True,
                 equalized=False):
        super().__init__()
        if method not in UPSAMPLE_METHODS:
            raise ValueError(f"Unknown upsample method '{method}', expected one of {UPSAMPLE_METHODS}")
        self.method = method

        padding = kernel_size // 2
        if method == "stride":
            # (H - 1) * 2 - 2p + (k + 1) == 2H
            self.conv = sn_conv_transpose2d(in_channels, out_channels, kernel_size + 1,
                                            stride=2, padding=padding, enabled=spectral_norm,
                                            equalized=equalized)
        elif method == "depth_to_space":
            self.conv = sn_conv2d(in_channels, out_channels * 4, kernel_size,
                                  padding=padding, enabled=spectral_norm, equalized=equalized)
        else:
            self.conv = sn_conv2d(in_channels, out_channels, kernel_size,
                                  padding=padding, enabled=spectral_norm, equalized=equalized)

    def forward(self, x):
        if self.method == "nearest":
            return self.conv(resize2x_nearest(x))
        if self.method == "bilinear":
            return self.conv(resize2x_bilinear(x))
        if self.method == "depth_to_space":
            return depth_to_space(self.conv(x), 2)
        return self.conv(x)


class DownSamplingConv2d(nn.Module):
    """Convolution combined with a 2x spatial downsample"""

    def __init__(self, in_channels, out_channels, kernel_size, method, spectral_norm=True,
                 equalized=False):
        super().__init__()
        if method not in DOWNSAMPLE_METHODS:
            raise ValueError(f"Unknown downsample method '{method}', expected one of {DOWNSAMPLE_METHODS}")
        self.method = method

        stride = 2 if method == "stride" else 1
        self.conv = sn_conv2d(in_channels, out_channels, kernel_size, stride=stride,
                              padding=kernel_size // 2, enabled=spectral_norm, equalized=equalized)

    def forward(self, x):
        x = self.conv(x)
        if self.method == "avg_pool":
            return F.avg_pool2d(x, 2)
        if self.method == "nearest":
            return F.interpolate(x, scale_factor=0.5, mode="nearest")
        if self.method == "bilinear":
            return F.interpolate(x, scale_factor=0.5, mode="bilinear", align_corners=False)
        return x


# -------- Minibatch stddev -------- #
class MinibatchStdConcat(nn.Module):
    """
    Appends the per-group standard deviation as an extra channel.
    Sample i falls into group i % (B / group_size).
    """

    def __init__(self, group_size=4, eps=1e-8):
        super().__init__()
        self.group_size = group_size
        self.eps = eps

    def forward(self, x):
        b, c, h, w = x.shape
        if b % self.group_size != 0:
            raise ValueError(f"Batch size {b} is not divisible by group_size {self.group_size}")

        y = x.reshape(self.group_size, b // self.group_size, c, h, w)
        y = y - y.mean(dim=0, keepdim=True)
        y = torch.sqrt((y ** 2).mean(dim=0) + self.eps)  # [B/G, C, H, W]
        y = y.mean(dim=(1, 2, 3), keepdim=True)           # [B/G, 1, 1, 1]
        y = y.repeat(self.group_size, 1, h, w)            # [B, 1, H, W]
        return torch.cat([x, y], dim=1)
