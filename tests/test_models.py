import numpy as np
import pytest
import torch
from PIL import Image
from torch import nn

from densesteg import SteganoGAN, WeightsError
from densesteg.config import WEIGHT_FILES
from densesteg.utils import bytes_to_bits, encode_bytes

from conftest import DATA_DEPTH, HIDDEN_SIZE


class PayloadDecoder(nn.Module):
    """Stands in for a trained decoder by returning logits for a known payload."""

    def __init__(self, payload):
        super().__init__()
        self.register_buffer('payload', payload)

    def forward(self, x):
        assert x.shape[2:] == self.payload.shape[2:]
        return self.payload * 2.0 - 1.0


def test_networks_start_in_eval_mode(model):
    assert not any(network.training for network in model.networks.values())


def test_from_weights_infers_hyperparameters(model, weights_dir):
    loaded = SteganoGAN.from_weights(str(weights_dir))
    assert loaded.data_depth == DATA_DEPTH
    assert loaded.encoder.hidden_size == HIDDEN_SIZE
    assert loaded.has_critic
    assert not any(p.requires_grad for n in loaded.networks.values() for p in n.parameters())

    image = torch.rand(1, 3, 10, 9) * 2 - 1
    data = torch.ones(1, DATA_DEPTH, 10, 9)
    with torch.no_grad():
        assert torch.allclose(loaded.encoder(image, data), model.encoder(image, data))
        assert torch.allclose(loaded.decoder(image), model.decoder(image))
        assert torch.allclose(loaded.critic(image), model.critic(image))


def test_from_weights_without_critic(weights_dir, cover_path):
    (weights_dir / WEIGHT_FILES['critic']).unlink()
    loaded = SteganoGAN.from_weights(str(weights_dir))
    assert not loaded.has_critic
    with pytest.raises(ValueError):
        loaded.critic_score(str(cover_path))
    assert sorted(loaded.save_weights(str(weights_dir / 'copy'))) == ['decoder', 'encoder']


def test_from_weights_wrong_depth(weights_dir):
    with pytest.raises(WeightsError):
        SteganoGAN.from_weights(str(weights_dir), data_depth=DATA_DEPTH + 1, hidden_size=HIDDEN_SIZE)


def test_from_weights_missing_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        SteganoGAN.from_weights(str(tmp_path / 'missing'))


def test_make_payload_repeats_message(model):
    payload = model._make_payload(40, 20, DATA_DEPTH, 'hi')
    assert payload.shape == (1, DATA_DEPTH, 40, 20)

    message = bytes_to_bits(encode_bytes('hi'.encode('utf-8'))) + [0] * 32
    flat = payload.view(-1).int().tolist()
    assert flat[:len(message)] == message
    assert flat[len(message):2 * len(message)] == message[:len(flat) - len(message)]


def test_encode_keeps_size(model, cover_path, tmp_path):
    output = tmp_path / 'stego.png'
    model.encode(str(cover_path), str(output), 'hello')
    with Image.open(output) as stego, Image.open(cover_path) as cover:
        assert stego.size == cover.size
        assert stego.mode == 'RGB'


def test_encode_decode(model, cover_path, tmp_path):
    output = tmp_path / 'stego.png'
    model.encode(str(cover_path), str(output), 'hi')

    width, height = Image.open(output).size
    model.decoder = PayloadDecoder(model._make_payload(width, height, DATA_DEPTH, 'hi'))
    assert model.decode(str(output)) == 'hi'


def test_decode_missing_file(model, tmp_path):
    with pytest.raises(ValueError, match='cannot read image'):
        model.decode(str(tmp_path / 'missing.png'))


def test_candidates_skip_garbage(model):
    message = bytes_to_bits(encode_bytes('кофе'.encode('utf-8')))
    garbage = bytes_to_bits(b'\xff' * 40)
    bits = message + [0] * 32 + garbage + [0] * 32 + message
    assert model._candidates(bits) == ['кофе', 'кофе']


def test_evaluate(model, cover_path, tmp_path):
    metrics = model.evaluate(str(cover_path), str(cover_path))
    assert metrics['psnr'] == float('inf')
    assert metrics['ssim'] == pytest.approx(1.0, abs=1e-4)

    output = tmp_path / 'stego.png'
    model.encode(str(cover_path), str(output), 'hello')
    metrics = model.evaluate(str(cover_path), str(output), text='hello')
    assert 0.0 <= metrics['decoder_acc'] <= 1.0
    assert metrics['bpp'] == pytest.approx(DATA_DEPTH * (2 * metrics['decoder_acc'] - 1))


def test_critic_score(model, cover_path):
    assert isinstance(model.critic_score(str(cover_path)), float)


def test_batch(model, cover_path, tmp_path):
    outputs = model.encode_batch(
        [(str(cover_path), 'one'), (str(tmp_path / 'missing.png'), 'two')],
        output_dir=str(tmp_path),
    )
    assert outputs == [str(tmp_path / 'cover_encoded.png'), None]
    assert model.decode_batch([str(tmp_path / 'missing.png')]) == [None]


def test_batch_bad_message_and_missing_output(model, cover_path, tmp_path):
    outputs = model.encode_batch(
        [(str(cover_path), b'not text'), (str(cover_path), 'ok')],
        output_dir=str(tmp_path),
    )
    assert outputs == [None, str(tmp_path / 'cover_encoded.png')]

    assert model.encode_batch([(str(cover_path), 'hi')]) == [None]
    assert model.encode_batch([(str(cover_path), 'hi', str(tmp_path / 'explicit.png'))]) == [
        str(tmp_path / 'explicit.png')]


def test_load_image_rejects_non_image(model, tmp_path):
    fake = tmp_path / 'notes.png'
    fake.write_text('this is not a picture')
    with pytest.raises(ValueError, match='cannot read image'):
        model.load_image(str(fake))
    assert model.decode_batch([str(fake)]) == [None]


@pytest.mark.parametrize('name', ['cover.gif', 'cover.txt'])
def test_load_image_rejects_unsupported_format(model, cover_path, tmp_path, name):
    other = tmp_path / name
    other.write_bytes(cover_path.read_bytes())
    with pytest.raises(ValueError, match='unsupported image format'):
        model.load_image(str(other))


def test_load_image_layout(model, cover_path):
    image = model.load_image(str(cover_path))
    assert image.shape == (1, 3, 17, 13)
    assert image.min() >= -1.0 and image.max() <= 1.0


def test_decode_majority_vote(model, tmp_path):
    size = 40
    path = tmp_path / 'square.png'
    Image.fromarray(np.zeros((size, size, 3), dtype=np.uint8)).save(path)

    def copy(text):
        return bytes_to_bits(encode_bytes(text.encode('utf-8'))) + [0] * 32

    bits = copy('b') + copy('a') + copy('a')
    bits += [0] * (size * size * DATA_DEPTH - len(bits))
    model.decoder = PayloadDecoder(torch.FloatTensor(bits).view(1, DATA_DEPTH, size, size))
    assert model.decode(str(path)) == 'a'


def test_decode_without_message(model, cover_path):
    model.decoder = PayloadDecoder(torch.zeros(1, DATA_DEPTH, 17, 13))
    with pytest.raises(ValueError, match='no message found'):
        model.decode(str(cover_path))
