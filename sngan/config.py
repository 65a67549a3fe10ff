"""
Configuration for a training run.
Loaded once at start-up and read-only afterwards.
"""

import json
from dataclasses import asdict, dataclass, field, fields

from sngan.models.layers import ACTIVATIONS, DOWNSAMPLE_METHODS, NORM_METHODS, UPSAMPLE_METHODS
from sngan.models.loss import LOSS_TYPES


def _check_choice(name, value, choices):
    if value not in choices:
        raise ValueError(f"Invalid {name} '{value}', expected one of {choices}")


def num_blocks(image_size, bottom_width):
    """Number of 2x resolution steps from bottom_width to image_size"""
    n = 0
    size = bottom_width
    while size < image_size:
        size *= 2
        n += 1
    if size != image_size:
        raise ValueError(f"image_size {image_size} is not bottom_width {bottom_width} times a power of two")
    return n


def _check_channels(channels, image_size, bottom_width):
    n = num_blocks(image_size, bottom_width)
    if len(channels) < n + 1:
        raise ValueError(
            f"Channel schedule {list(channels)} is too short for {bottom_width} -> {image_size} "
            f"({n + 1} entries needed)"
        )
    if any(c <= 0 for c in channels):
        raise ValueError(f"Channel counts must be positive: {list(channels)}")


@dataclass(frozen=True)
class GeneratorOptions:
    latent_size: int = 128
    image_size: int = 64
    bottom_width: int = 4
    # feature count at resolution bottom_width * 2^k
    channels: tuple = (128, 128, 64, 32, 16)
    upsample_method: str = "bilinear"
    norm_method: str = "batch"
    activation: str = "leaky_relu"
    enable_spectral_norm: bool = True
    enable_equalized_lr: bool = False
    residual: bool = True
    tanh_output: bool = True

    def __post_init__(self):
        object.__setattr__(self, "channels", tuple(self.channels))
        _check_choice("upsample_method", self.upsample_method, UPSAMPLE_METHODS)
        _check_choice("norm_method", self.norm_method, NORM_METHODS)
        _check_choice("activation", self.activation, ACTIVATIONS)
        if self.latent_size <= 0:
            raise ValueError(f"latent_size must be positive, got {self.latent_size}")
        _check_channels(self.channels, self.image_size, self.bottom_width)


@dataclass(frozen=True)
class DiscriminatorOptions:
    image_size: int = 64
    bottom_width: int = 4
    # feature count at resolution bottom_width * 2^k
    channels: tuple = (128, 128, 64, 32, 16)
    downsample_method: str = "avg_pool"
    norm_method: str = "batch"
    activation: str = "leaky_relu"
    enable_spectral_norm: bool = True
    enable_equalized_lr: bool = False
    enable_minibatch_std_concat: bool = True
    minibatch_std_group_size: int = 4
    residual: bool = True

    def __post_init__(self):
        object.__setattr__(self, "channels", tuple(self.channels))
        _check_choice("downsample_method", self.downsample_method, DOWNSAMPLE_METHODS)
        _check_choice("norm_method", self.norm_method, NORM_METHODS)
        _check_choice("activation", self.activation, ACTIVATIONS)
        if self.minibatch_std_group_size <= 0:
            raise ValueError(f"minibatch_std_group_size must be positive, got {self.minibatch_std_group_size}")
        _check_channels(self.channels, self.image_size, self.bottom_width)


@dataclass(frozen=True)
class Config:
    batch_size: int = 32
    n_dis_update: int = 1
    loss: str = "hinge"
    image_size: int = 64
    latent_size: int = 128

    # Optimizers
    lr_g: float = 2e-4
    lr_d: float = 2e-4
    beta1: float = 0.5
    beta2: float = 0.999

    # Logging cadence
    print_interval: int = 10
    log_interval: int = 100
    test_interval: int = 1000
    plot_grid_cols: int = 8

    num_workers: int = 0
    seed: int = 42

    generator: GeneratorOptions = field(default_factory=GeneratorOptions)
    discriminator: DiscriminatorOptions = field(default_factory=DiscriminatorOptions)

    def __post_init__(self):
        _check_choice("loss", self.loss, LOSS_TYPES)
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.n_dis_update <= 0:
            raise ValueError(f"n_dis_update must be positive, got {self.n_dis_update}")
        if self.generator.image_size != self.image_size or self.discriminator.image_size != self.image_size:
            raise ValueError(
                f"image_size mismatch: config {self.image_size}, generator {self.generator.image_size}, "
                f"discriminator {self.discriminator.image_size}"
            )
        if self.generator.latent_size != self.latent_size:
            raise ValueError(
                f"latent_size mismatch: config {self.latent_size}, generator {self.generator.latent_size}"
            )
        d = self.discriminator
        if d.enable_minibatch_std_concat and self.batch_size % d.minibatch_std_group_size != 0:
            raise ValueError(
                f"batch_size {self.batch_size} is not divisible by minibatch_std_group_size "
                f"{d.minibatch_std_group_size}"
            )

    @property
    def log_name(self):
        return f"{self.loss}_{self.generator.upsample_method}_{self.discriminator.downsample_method}"

    # -------- (De)serialization -------- #
    def to_dict(self):
        data = asdict(self)
        data["generator"]["channels"] = list(self.generator.channels)
        data["discriminator"]["channels"] = list(self.discriminator.channels)
        return data

    def to_json(self):
        return json.dumps(self.to_dict(), indent=4)

    def save(self, path):
        with open(path, "w") as f:
            f.write(self.to_json())

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")

        # Top-level sizes fill in the nested options unless given there
        for key, options_cls in (("generator", GeneratorOptions), ("discriminator", DiscriminatorOptions)):
            options = dict(data.get(key, {}))
            option_names = {f.name for f in fields(options_cls)}
            unknown = set(options) - option_names
            if unknown:
                raise ValueError(f"Unknown {key} keys: {sorted(unknown)}")
            for shared in ("image_size", "latent_size"):
                if shared in data and shared in option_names:
                    options.setdefault(shared, data[shared])
            data[key] = options_cls(**options)
        return cls(**data)

    @classmethod
    def from_json(cls, path):
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))
