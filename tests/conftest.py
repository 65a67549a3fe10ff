import pytest
import torch

from sngan.config import DiscriminatorOptions, GeneratorOptions


@pytest.fixture(autouse=True)
def seed():
    torch.manual_seed(0)


@pytest.fixture
def tiny_generator_options():
    # 8x8 -> 32x32 in two blocks
    return GeneratorOptions(latent_size=8, image_size=32, bottom_width=8, channels=(16, 16, 8))


@pytest.fixture
def tiny_discriminator_options():
    return DiscriminatorOptions(image_size=32, bottom_width=8, channels=(16, 16, 8))
