import json

import pytest

from sngan.config import Config, DiscriminatorOptions, GeneratorOptions, num_blocks


def test_defaults_are_consistent():
    config = Config()
    assert config.loss == "hinge"
    assert config.generator.image_size == config.discriminator.image_size == config.image_size
    assert config.generator.latent_size == config.latent_size
    assert config.log_name == "hinge_bilinear_avg_pool"
    assert config.generator.norm_method == config.discriminator.norm_method == "batch"
    assert not config.generator.enable_equalized_lr
    assert not config.discriminator.enable_equalized_lr


@pytest.mark.parametrize("image_size,bottom_width,expected", [(64, 4, 4), (32, 8, 2), (8, 8, 0)])
def test_num_blocks(image_size, bottom_width, expected):
    assert num_blocks(image_size, bottom_width) == expected


def test_num_blocks_rejects_non_power_of_two():
    with pytest.raises(ValueError):
        num_blocks(48, 4)


def test_json_round_trip(tmp_path):
    config = Config(
        batch_size=8,
        n_dis_update=3,
        loss="lsgan",
        image_size=32,
        latent_size=16,
        generator=GeneratorOptions(latent_size=16, image_size=32, bottom_width=8,
                                   channels=(16, 16, 8), upsample_method="stride"),
        discriminator=DiscriminatorOptions(image_size=32, bottom_width=8, channels=(16, 16, 8)),
    )
    path = tmp_path / "config.json"
    config.save(str(path))

    assert json.loads(path.read_text())["generator"]["channels"] == [16, 16, 8]
    assert Config.from_json(str(path)) == config


def test_top_level_sizes_fill_nested_options():
    config = Config.from_dict({
        "image_size": 32,
        "latent_size": 16,
        "batch_size": 4,
        "generator": {"bottom_width": 8, "channels": [16, 16, 8]},
        "discriminator": {"bottom_width": 8, "channels": [16, 16, 8]},
    })
    assert config.generator.image_size == 32
    assert config.generator.latent_size == 16
    assert config.discriminator.image_size == 32
    assert config.generator.channels == (16, 16, 8)


def test_unknown_keys_are_rejected():
    with pytest.raises(ValueError, match="Unknown config keys"):
        Config.from_dict({"learning_rate": 0.1})
    with pytest.raises(ValueError, match="Unknown generator keys"):
        Config.from_dict({"generator": {"depth": 3}})


def test_batch_size_must_divide_into_groups():
    with pytest.raises(ValueError):
        Config(batch_size=6)
    # fine once minibatch stddev is off
    Config(batch_size=6, discriminator=DiscriminatorOptions(enable_minibatch_std_concat=False))


@pytest.mark.parametrize("kwargs", [
    {"loss": "wasserstein"},
    {"batch_size": 0},
    {"n_dis_update": 0},
    {"latent_size": 64},
    {"image_size": 128},
])
def test_invalid_values_are_rejected(kwargs):
    with pytest.raises(ValueError):
        Config(**kwargs)
