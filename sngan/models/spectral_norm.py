"""
Spectral Normalization
Power-iteration estimate of the largest singular value, divided out of the
weight on every forward pass (https://arxiv.org/abs/1802.05957)

Equalized learning rate
Weights stored with unit standard deviation and rescaled at run time
(https://arxiv.org/abs/1710.10196)
"""

import torch
import torch.nn as nn
import torch.nn.functional as F


def l2normalize(x, eps=1e-8):
    """x / sqrt(sum(x^2) + eps)"""
    return x * torch.rsqrt(torch.sum(x ** 2) + eps)


def weight_matrix(weight, output_axis):
    """Reshape a weight to [rows, cols] with the output axis as columns"""
    return weight.movedim(output_axis, -1).reshape(-1, weight.shape[output_axis])


def normalized_weight(weight, u, v, output_axis):
    """
    weight / sigma with sigma = u . W . v^T

    u and v are treated as constants; the gradient flows through sigma
    back into the weight.
    """
    mat = weight_matrix(weight, output_axis)
    sigma = torch.matmul(torch.matmul(u, mat), v.t())  # [1, 1]
    return weight / sigma.squeeze()


def output_axis(layer):
    """Axis of the weight that indexes output features"""
    if isinstance(layer, nn.ConvTranspose2d):
        return 1
    if isinstance(layer, (nn.Conv2d, nn.Linear)):
        return 0
    raise ValueError(f"Unsupported layer for weight reparameterization: {type(layer).__name__}")


def apply_with_weight(layer, x, weight):
    """Run `layer` on x with `weight` in place of its stored weight"""
    if isinstance(layer, nn.ConvTranspose2d):
        return F.conv_transpose2d(x, weight, layer.bias, layer.stride, layer.padding,
                                  layer.output_padding, layer.groups, layer.dilation)
    if isinstance(layer, nn.Conv2d):
        return F.conv2d(x, weight, layer.bias, layer.stride, layer.padding,
                        layer.dilation, layer.groups)
    return F.linear(x, weight, layer.bias)


# -------- Equalized learning rate -------- #
class EqualizedLR(nn.Module):
    """
    Stores weight / std and multiplies the scale back in on every call, so
    the optimizer sees unit-scale weights. The bias is left as is.
    """

    def __init__(self, layer, enabled=True):
        super().__init__()
        self.output_axis = output_axis(layer)
        self.layer = layer
        self.enabled = enabled
        self.scale = 1.0
        self.reset_scale()

    @property
    def weight(self):
        return self.layer.weight

    @property
    def bias(self):
        return self.layer.bias

    @torch.no_grad()
    def reset_scale(self):
        """Take the stored weight as the freshly initialized effective weight"""
        if not self.enabled:
            self.scale = 1.0
            return
        std = self.layer.weight.std().item()
        self.layer.weight.div_(std)
        self.scale = std

    def effective_weight(self):
        if self.scale == 1.0:
            return self.layer.weight
        return self.layer.weight * self.scale

    def forward(self, x):
        return apply_with_weight(self.layer, x, self.effective_weight())

    def extra_repr(self):
        return f"enabled={self.enabled}, scale={self.scale:.4g}"


# -------- Spectral normalization -------- #
class SpectralNorm(nn.Module):
    """
    Wraps a Conv2d, ConvTranspose2d or Linear layer (optionally inside an
    EqualizedLR) and replaces its weight with the spectrally normalized one.

    Args:
        layer: the wrapped linear operator
        enabled: when False the raw weight is used and no u/v are kept
        n_power_iterations: power-iteration rounds per training forward call
    """

    def __init__(self, layer, enabled=True, n_power_iterations=1, eps=1e-8):
        super().__init__()
        base = layer.layer if isinstance(layer, EqualizedLR) else layer
        self.output_axis = output_axis(base)
        self.layer = layer
        self.n_power_iterations = n_power_iterations
        self.eps = eps

        self.register_buffer("u", None)
        self.register_buffer("v", None)
        self._enabled = False
        self.enabled = enabled

    @property
    def enabled(self):
        return self._enabled

    @enabled.setter
    def enabled(self, value):
        self._enabled = bool(value)
        if self._enabled and self.v is None:
            self.reset_vectors()

    @property
    def base(self):
        """The plain torch layer"""
        if isinstance(self.layer, EqualizedLR):
            return self.layer.layer
        return self.layer

    @property
    def weight(self):
        return self.base.weight

    @property
    def bias(self):
        return self.base.bias

    def source_weight(self):
        """Weight before spectral normalization"""
        if isinstance(self.layer, EqualizedLR):
            return self.layer.effective_weight()
        return self.layer.weight

    def reset_vectors(self):
        """Fresh u, v matched to the current weight"""
        with torch.no_grad():
            weight = self.source_weight()
            rows = weight.numel() // weight.shape[self.output_axis]
            cols = weight.shape[self.output_axis]
            v = l2normalize(torch.randn(1, cols, device=weight.device, dtype=weight.dtype), self.eps)
            mat = weight_matrix(weight, self.output_axis)
            u = l2normalize(torch.matmul(v, mat.t()), self.eps)
        if self.v is None:
            self.u = u.reshape(1, rows)
            self.v = v
        else:
            self.u.copy_(u.reshape(1, rows))
            self.v.copy_(v)

    @torch.no_grad()
    def power_iteration(self):
        """Advance u and v against the current weight (mutates state)"""
        mat = weight_matrix(self.source_weight(), self.output_axis)
        u, v = self.u, self.v
        for _ in range(self.n_power_iterations):
            u = l2normalize(torch.matmul(v, mat.t()), self.eps)  # [1, rows]
            v = l2normalize(torch.matmul(u, mat), self.eps)      # [1, cols]
        self.u.copy_(u)
        self.v.copy_(v)

    def sigma(self):
        """Current largest-singular-value estimate (no state update)"""
        if not self.enabled:
            return None
        with torch.no_grad():
            mat = weight_matrix(self.source_weight(), self.output_axis)
            return torch.matmul(torch.matmul(self.u, mat), self.v.t()).item()

    def weight_bar(self):
        weight = self.source_weight()
        if not self.enabled:
            return weight
        if self.training:
            self.power_iteration()
        # Clones keep later in-place updates out of this step's autograd graph
        return normalized_weight(weight, self.u.clone(), self.v.clone(), self.output_axis)

    def forward(self, x):
        return apply_with_weight(self.base, x, self.weight_bar())

    def extra_repr(self):
        return f"enabled={self.enabled}, n_power_iterations={self.n_power_iterations}"


# -------- Factories -------- #
def _wrap(layer, enabled, equalized):
    if equalized:
        layer = EqualizedLR(layer)
    return SpectralNorm(layer, enabled=enabled)


def sn_conv2d(in_channels, out_channels, kernel_size, stride=1, padding=0,
              bias=True, enabled=True, equalized=False):
    return _wrap(
        nn.Conv2d(in_channels, out_channels, kernel_size, stride, padding, bias=bias),
        enabled, equalized,
    )


def sn_conv_transpose2d(in_channels, out_channels, kernel_size, stride=1, padding=0,
                        output_padding=0, bias=True, enabled=True, equalized=False):
    return _wrap(
        nn.ConvTranspose2d(in_channels, out_channels, kernel_size, stride, padding,
                           output_padding, bias=bias),
        enabled, equalized,
    )


def sn_linear(in_features, out_features, bias=True, enabled=True, equalized=False):
    return _wrap(nn.Linear(in_features, out_features, bias=bias), enabled, equalized)
