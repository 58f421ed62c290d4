import numpy as np
import pytest
import torch
from PIL import Image
from torch import nn

from densesteg import BasicCritic, DenseDecoder, DenseEncoder, SteganoGAN

DATA_DEPTH = 2
HIDDEN_SIZE = 8


def randomize_batch_norm(module, seed=0):
    """Give every batch norm layer non-trivial statistics and affine parameters."""
    generator = torch.Generator().manual_seed(seed)
    with torch.no_grad():
        for layer in module.modules():
            if isinstance(layer, nn.BatchNorm2d):
                n = layer.num_features
                layer.running_mean.copy_(torch.rand(n, generator=generator) - 0.5)
                layer.running_var.copy_(torch.rand(n, generator=generator) + 0.5)
                layer.weight.copy_(torch.rand(n, generator=generator) + 0.5)
                layer.bias.copy_(torch.rand(n, generator=generator) - 0.5)
    return module


@pytest.fixture
def model():
    torch.manual_seed(0)
    steg = SteganoGAN(
        data_depth=DATA_DEPTH,
        encoder=DenseEncoder,
        decoder=DenseDecoder,
        critic=BasicCritic,
        hidden_size=HIDDEN_SIZE,
        cuda=False,
    )
    for network in steg.networks.values():
        randomize_batch_norm(network)
    return steg


@pytest.fixture
def weights_dir(model, tmp_path):
    out = tmp_path / 'weights'
    model.save_weights(str(out))
    return out


@pytest.fixture
def cover_path(tmp_path):
    rng = np.random.default_rng(0)
    pixels = rng.integers(0, 256, size=(13, 17, 3), dtype=np.uint8)
    path = tmp_path / 'cover.png'
    Image.fromarray(pixels).save(path)
    return path
