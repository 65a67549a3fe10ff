import torch.nn as nn

from sngan.models.layers import (
    DownSamplingConv2d,
    UpSamplingConv2d,
    activation,
    normalization,
)
from sngan.models.spectral_norm import SpectralNorm, sn_conv2d


def _collect_sn(*modules):
    layers = []
    for m in modules:
        if isinstance(m, SpectralNorm):
            layers.append(m)
        elif hasattr(m, "conv"):
            layers.append(m.conv)
    return layers


class GBlock(nn.Module):
    """Generator block: [B, in, H, W] -> [B, out, 2H, 2W]"""

    def __init__(self, in_channels, out_channels, upsample_method="bilinear",
                 norm_method="batch", activation_method="leaky_relu",
                 spectral_norm=True, equalized_lr=False, residual=True):
        super().__init__()
        hidden_channels = in_channels

        self.norm1 = normalization(norm_method, in_channels)
        self.act1 = activation(activation_method)
        self.conv1 = UpSamplingConv2d(in_channels, hidden_channels, 3, upsample_method,
                                      spectral_norm=spectral_norm, equalized=equalized_lr)
        self.norm2 = normalization(norm_method, hidden_channels)
        self.act2 = activation(activation_method)
        self.conv2 = sn_conv2d(hidden_channels, out_channels, 3, padding=1,
                               enabled=spectral_norm, equalized=equalized_lr)

        # Shortcut
        if residual:
            self.shortcut = UpSamplingConv2d(in_channels, out_channels, 1, upsample_method,
                                             spectral_norm=spectral_norm, equalized=equalized_lr)
        else:
            self.shortcut = None

    def normalizable_layers(self):
        return _collect_sn(self.conv1, self.conv2, self.shortcut)

    def forward(self, x):
        h = self.conv1(self.act1(self.norm1(x)))
        h = self.conv2(self.act2(self.norm2(h)))

        if self.shortcut is not None:
            h = h + self.shortcut(x)
        return h


class DBlock(nn.Module):
    """Discriminator block: [B, in, H, W] -> [B, out, H/2, W/2]"""

    def __init__(self, in_channels, out_channels, downsample_method="avg_pool",
                 norm_method="none", activation_method="leaky_relu",
                 spectral_norm=True, equalized_lr=False, residual=True):
        super().__init__()
        hidden_channels = in_channels

        self.act1 = activation(activation_method)
        self.conv1 = sn_conv2d(in_channels, hidden_channels, 3, padding=1,
                               enabled=spectral_norm, equalized=equalized_lr)
        self.norm = normalization(norm_method, hidden_channels)
        self.act2 = activation(activation_method)
        self.conv2 = DownSamplingConv2d(hidden_channels, out_channels, 3, downsample_method,
                                        spectral_norm=spectral_norm, equalized=equalized_lr)

        # Shortcut
        if residual:
            self.shortcut = DownSamplingConv2d(in_channels, out_channels, 1, downsample_method,
                                               spectral_norm=spectral_norm, equalized=equalized_lr)
        else:
            self.shortcut = None

    def normalizable_layers(self):
        return _collect_sn(self.conv1, self.conv2, self.shortcut)

    def forward(self, x):
        h = self.conv1(self.act1(x))
        h = self.conv2(self.act2(self.norm(h)))

        if self.shortcut is not None:
            h = h + self.shortcut(x)
        return h
