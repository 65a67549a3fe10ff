import dataclasses

import pytest
import torch

from sngan.config import DiscriminatorOptions, GeneratorOptions
from sngan.models.blocks import DBlock, GBlock
from sngan.models.gan_model import Discriminator, Generator
from sngan.models.layers import DOWNSAMPLE_METHODS, NORM_METHODS, UPSAMPLE_METHODS
from sngan.models.spectral_norm import EqualizedLR, SpectralNorm


def sn_modules(model):
    return {id(m) for m in model.modules() if isinstance(m, SpectralNorm)}


# -------- Blocks -------- #
@pytest.mark.parametrize("residual", [True, False])
def test_gblock_doubles_resolution(residual):
    block = GBlock(8, 4, residual=residual)
    assert block(torch.randn(2, 8, 4, 4)).shape == (2, 4, 8, 8)
    assert len(block.normalizable_layers()) == (3 if residual else 2)
    assert (block.shortcut is None) == (not residual)


@pytest.mark.parametrize("residual", [True, False])
def test_dblock_halves_resolution(residual):
    block = DBlock(4, 8, residual=residual)
    assert block(torch.randn(2, 4, 8, 8)).shape == (2, 8, 4, 4)
    assert len(block.normalizable_layers()) == (3 if residual else 2)
    assert (block.shortcut is None) == (not residual)


# -------- Generator -------- #
@pytest.mark.parametrize("upsample_method", UPSAMPLE_METHODS)
@pytest.mark.parametrize("norm_method", NORM_METHODS)
def test_generator_output_shape(tiny_generator_options, upsample_method, norm_method):
    opts = dataclasses.replace(tiny_generator_options, upsample_method=upsample_method,
                               norm_method=norm_method)
    G = Generator(opts)
    out = G(torch.randn(4, opts.latent_size))
    assert out.shape == (4, 3, 32, 32)
    assert out.abs().max().item() <= 1.0


def test_generator_without_tanh_is_unbounded(tiny_generator_options):
    opts = dataclasses.replace(tiny_generator_options, tanh_output=False, enable_spectral_norm=False)
    G = Generator(opts)
    with torch.no_grad():
        G.tail.weight.mul_(100)
    assert G(torch.randn(4, opts.latent_size)).abs().max().item() > 1.0


def test_generator_registry_covers_every_spectral_norm_layer(tiny_generator_options):
    G = Generator(tiny_generator_options)
    assert {id(m) for m in G.sn_layers.values()} == sn_modules(G)
    # head, 3 per residual block, tail
    assert len(G.sn_layers) == 2 + 3 * 2
    assert list(G.sn_layers)[0] == "head" and list(G.sn_layers)[-1] == "tail"


def test_generator_eval_output_is_deterministic(tiny_generator_options):
    G = Generator(tiny_generator_options)
    G.train()
    G(torch.randn(4, 8))
    G.eval()
    z = torch.randn(4, 8)
    with torch.no_grad():
        assert torch.equal(G(z), G(z))


def test_default_generator_produces_64px_images():
    G = Generator()
    assert G(torch.randn(2, 128)).shape == (2, 3, 64, 64)


# -------- Discriminator -------- #
@pytest.mark.parametrize("downsample_method", DOWNSAMPLE_METHODS)
@pytest.mark.parametrize("minibatch_std", [True, False])
def test_discriminator_output_shape(tiny_discriminator_options, downsample_method, minibatch_std):
    opts = dataclasses.replace(tiny_discriminator_options, downsample_method=downsample_method,
                               enable_minibatch_std_concat=minibatch_std)
    D = Discriminator(opts)
    assert D(torch.randn(8, 3, 32, 32)).shape == (8,)


def test_discriminator_registry_covers_every_spectral_norm_layer(tiny_discriminator_options):
    D = Discriminator(tiny_discriminator_options)
    assert {id(m) for m in D.sn_layers.values()} == sn_modules(D)
    sigmas = D.spectral_norms()
    assert set(sigmas) == set(D.sn_layers)
    assert all(s > 0 for s in sigmas.values())


def test_discriminator_rejects_batch_not_divisible_by_group(tiny_discriminator_options):
    D = Discriminator(tiny_discriminator_options)
    with pytest.raises(ValueError):
        D(torch.randn(6, 3, 32, 32))


def test_discriminator_without_spectral_norm(tiny_discriminator_options):
    opts = dataclasses.replace(tiny_discriminator_options, enable_spectral_norm=False)
    D = Discriminator(opts)
    assert D.spectral_norms() == {}
    assert all(layer.u is None for layer in D.sn_layers.values())
    assert D(torch.randn(4, 3, 32, 32)).shape == (4,)


def test_spectral_norm_can_be_toggled(tiny_discriminator_options):
    D = Discriminator(tiny_discriminator_options)
    D.set_spectral_norm(False)
    assert D.spectral_norms() == {}
    D.set_spectral_norm(True)
    assert set(D.spectral_norms()) == set(D.sn_layers)


def test_power_iteration_only_during_training(tiny_discriminator_options):
    D = Discriminator(tiny_discriminator_options)
    x = torch.randn(4, 3, 32, 32)

    D.eval()
    before = {name: layer.v.clone() for name, layer in D.sn_layers.items()}
    D(x)
    assert all(torch.equal(D.sn_layers[name].v, v) for name, v in before.items())

    D.train()
    D(x)
    assert any(not torch.equal(D.sn_layers[name].v, v) for name, v in before.items())


def test_model_options_validate_channel_schedule():
    with pytest.raises(ValueError):
        GeneratorOptions(image_size=32, bottom_width=8, channels=(16, 16))
    with pytest.raises(ValueError):
        DiscriminatorOptions(image_size=48, bottom_width=8, channels=(16, 16, 8))
    with pytest.raises(ValueError):
        GeneratorOptions(upsample_method="bicubic")
    with pytest.raises(ValueError):
        DiscriminatorOptions(norm_method="layer")


def test_equalized_learning_rate_option(tiny_generator_options, tiny_discriminator_options):
    G = Generator(dataclasses.replace(tiny_generator_options, enable_equalized_lr=True))
    D = Discriminator(dataclasses.replace(tiny_discriminator_options, enable_equalized_lr=True))

    for model in (G, D):
        for name, layer in model.sn_layers.items():
            assert isinstance(layer.layer, EqualizedLR), name
            # rescaled after weight initialization
            assert layer.weight.std().item() == pytest.approx(1.0, rel=1e-4), name
        assert all(s > 0 for s in model.spectral_norms().values())

    fakes = G(torch.randn(4, 8))
    assert fakes.shape == (4, 3, 32, 32)
    assert D(fakes).shape == (4,)


def test_equalized_learning_rate_is_off_by_default(tiny_generator_options):
    G = Generator(tiny_generator_options)
    assert not any(isinstance(m, EqualizedLR) for m in G.modules())
