# gan_model.py
import torch
import torch.nn as nn

from sngan.config import DiscriminatorOptions, GeneratorOptions, num_blocks
from sngan.models.blocks import DBlock, GBlock
from sngan.models.layers import MinibatchStdConcat, activation, normalization
from sngan.models.spectral_norm import EqualizedLR, sn_conv2d, sn_linear


def init_weights(net, gain=1.0):
    """Xavier-uniform weights and zero biases for every conv / linear layer"""
    def init_func(m):
        classname = m.__class__.__name__
        if ("Conv" in classname or "Linear" in classname) and hasattr(m, "weight"):
            nn.init.xavier_uniform_(m.weight.data, gain=gain)
            if m.bias is not None:
                nn.init.constant_(m.bias.data, 0.0)
        elif "BatchNorm2d" in classname:
            nn.init.constant_(m.weight.data, 1.0)
            nn.init.constant_(m.bias.data, 0.0)

    net.apply(init_func)


class _SpectralNormMixin:
    """Shared access to the registered spectral-norm layers"""

    def _register_sn_layers(self):
        # Explicit registry; scales and u/v re-matched to the initialized weights
        self.sn_layers = {"head": self.head}
        for i, block in enumerate(self.blocks):
            for j, layer in enumerate(block.normalizable_layers()):
                self.sn_layers[f"block{i + 1}.{j}"] = layer
        self.sn_layers["tail"] = self.tail

        for layer in self.sn_layers.values():
            if isinstance(layer.layer, EqualizedLR):
                layer.layer.reset_scale()
            if layer.enabled:
                layer.reset_vectors()

    def spectral_norms(self):
        """Current sigma estimate of every enabled spectral-norm layer"""
        return {
            name: layer.sigma()
            for name, layer in self.sn_layers.items()
            if layer.enabled
        }

    def set_spectral_norm(self, enabled):
        for layer in self.sn_layers.values():
            layer.enabled = enabled

    def write_histograms(self, logger, step, prefix):
        for name, param in self.named_parameters():
            logger.add_histogram(f"{prefix}/{name}", param.detach(), step)


class Generator(_SpectralNormMixin, nn.Module):
    """Generator: noise [B, latent_size] -> image [B, 3, image_size, image_size]"""

    def __init__(self, options=None):
        super().__init__()
        self.options = options or GeneratorOptions()
        opts = self.options
        sn = opts.enable_spectral_norm
        eq = opts.enable_equalized_lr

        n = num_blocks(opts.image_size, opts.bottom_width)
        channels = opts.channels[:n + 1]

        self.head = sn_linear(opts.latent_size, channels[0] * opts.bottom_width ** 2,
                              enabled=sn, equalized=eq)
        self.blocks = nn.ModuleList([
            GBlock(channels[i], channels[i + 1],
                   upsample_method=opts.upsample_method,
                   norm_method=opts.norm_method,
                   activation_method=opts.activation,
                   spectral_norm=sn,
                   equalized_lr=eq,
                   residual=opts.residual)
            for i in range(n)
        ])
        self.norm = normalization(opts.norm_method, channels[-1])
        self.act = activation(opts.activation)
        self.tail = sn_conv2d(channels[-1], 3, 3, padding=1, enabled=sn, equalized=eq)

        init_weights(self)
        self._register_sn_layers()

    def forward(self, z):
        opts = self.options
        x = self.head(z)
        x = x.view(z.size(0), -1, opts.bottom_width, opts.bottom_width)

        for block in self.blocks:
            x = block(x)

        x = self.tail(self.act(self.norm(x)))
        if opts.tanh_output:
            x = torch.tanh(x)

        expected = (z.size(0), 3, opts.image_size, opts.image_size)
        if tuple(x.shape) != expected:
            raise RuntimeError(f"Invalid generator output shape {tuple(x.shape)}, expected {expected}")
        return x


class Discriminator(_SpectralNormMixin, nn.Module):
    """Discriminator: image [B, 3, image_size, image_size] -> score [B]"""

    def __init__(self, options=None):
        super().__init__()
        self.options = options or DiscriminatorOptions()
        opts = self.options
        sn = opts.enable_spectral_norm
        eq = opts.enable_equalized_lr

        n = num_blocks(opts.image_size, opts.bottom_width)
        channels = opts.channels[:n + 1]

        self.head = sn_conv2d(3, channels[n], 1, enabled=sn, equalized=eq)
        self.act = activation(opts.activation)
        self.blocks = nn.ModuleList([
            DBlock(channels[i + 1], channels[i],
                   downsample_method=opts.downsample_method,
                   norm_method=opts.norm_method,
                   activation_method=opts.activation,
                   spectral_norm=sn,
                   equalized_lr=eq,
                   residual=opts.residual)
            for i in reversed(range(n))
        ])

        if opts.enable_minibatch_std_concat:
            self.std_concat = MinibatchStdConcat(opts.minibatch_std_group_size)
            tail_channels = channels[0] + 1
        else:
            self.std_concat = None
            tail_channels = channels[0]
        self.tail = sn_conv2d(tail_channels, 1, opts.bottom_width, enabled=sn, equalized=eq)

        init_weights(self)
        self._register_sn_layers()

    def forward(self, x):
        h = self.act(self.head(x))
        for block in self.blocks:
            h = block(h)
        h = self.act(h)

        if self.std_concat is not None:
            h = self.std_concat(h)

        h = self.tail(h)  # [B, 1, 1, 1]
        return h.view(x.size(0))
