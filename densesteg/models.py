# -*- coding: utf-8 -*-
"""
SteganoGAN dense model, inference only
"""

import inspect
import logging
import os
from collections import Counter
from typing import List, Optional

import torch
from PIL import Image
from torchvision.transforms import functional as TF
from tqdm import tqdm

from densesteg.config import SUPPORTED_IMAGE_FORMATS, WEIGHT_FILES, get_config
from densesteg.critics import BasicCritic
from densesteg.decoders import DenseDecoder
from densesteg.encoders import DenseEncoder
from densesteg.utils import (
    PayloadError, bits_to_bytes, bytes_to_text, psnr, split_payload, ssim, text_to_bits)
from densesteg.weights import (
    export_state_dict, infer_hyperparameters, load_state_dict, read_tensors)

logger = logging.getLogger(__name__)

DELIMITER_BITS = [0] * 32


class SteganoGAN:
    """Hides text in images with a pretrained dense encoder and recovers it with the decoder.

    Networks are kept in eval mode so batch normalization always uses the
    running statistics stored with the weights.
    """

    def __init__(self, data_depth, encoder, decoder, critic,
                 cuda=False, verbose=False, **kwargs):
        self.verbose = verbose
        self.data_depth = data_depth

        kwargs['data_depth'] = data_depth
        self.encoder = self._get_instance(encoder, kwargs)
        self.decoder = self._get_instance(decoder, kwargs)
        self.critic = self._get_instance(critic, kwargs)
        self.has_critic = True
        self.set_device(cuda)
        self.eval()

    def _get_instance(self, class_or_instance, kwargs):
        if not inspect.isclass(class_or_instance):
            return class_or_instance
        argspec = inspect.getfullargspec(class_or_instance.__init__).args
        argspec.remove('self')
        return class_or_instance(**{arg: kwargs[arg] for arg in argspec})

    @property
    def networks(self):
        return {'encoder': self.encoder, 'decoder': self.decoder, 'critic': self.critic}

    def set_device(self, cuda=True):
        if cuda and torch.cuda.is_available():
            self.cuda = True
            self.device = torch.device('cuda')
        else:
            self.cuda = False
            self.device = torch.device('cpu')

        logger.debug('using %s device', torch.cuda.get_device_name(self.device) if self.cuda else 'CPU')

        for network in self.networks.values():
            network.to(self.device)

    def eval(self):
        for network in self.networks.values():
            network.eval()
        return self

    def freeze(self):
        """Make every parameter read-only."""
        for network in self.networks.values():
            for param in network.parameters():
                param.requires_grad_(False)
        return self

    @classmethod
    def from_weights(cls, weights_dir=None, data_depth=None, hidden_size=None,
                     cuda=False, verbose=False):
        """Build the dense model from a safetensors weights directory.

        Hyperparameters not given are inferred from the encoder tensors. The
        critic file is optional.
        """
        weights_dir = weights_dir or get_config()['weights_dir']
        encoder_path = os.path.join(weights_dir, WEIGHT_FILES['encoder'])

        if data_depth is None or hidden_size is None:
            inferred_depth, inferred_hidden = infer_hyperparameters(read_tensors(encoder_path))
            data_depth = data_depth or inferred_depth
            hidden_size = hidden_size or inferred_hidden

        model = cls(
            data_depth=data_depth,
            encoder=DenseEncoder,
            decoder=DenseDecoder,
            critic=BasicCritic,
            hidden_size=hidden_size,
            cuda=False,
            verbose=verbose,
        )

        load_state_dict(model.encoder, encoder_path)
        load_state_dict(model.decoder, os.path.join(weights_dir, WEIGHT_FILES['decoder']))

        critic_path = os.path.join(weights_dir, WEIGHT_FILES['critic'])
        if os.path.exists(critic_path):
            load_state_dict(model.critic, critic_path)
        else:
            model.has_critic = False
            logger.warning('no critic weights in %s, critic scores are unavailable', weights_dir)

        model.set_device(cuda)
        model.eval().freeze()
        logger.info('loaded weights from %s (data_depth=%d, hidden_size=%d)',
                    weights_dir, data_depth, hidden_size)
        return model

    def save_weights(self, out_dir):
        written = {}
        for name, network in self.networks.items():
            if name == 'critic' and not self.has_critic:
                continue
            path = os.path.join(out_dir, WEIGHT_FILES[name])
            export_state_dict(network, path)
            written[name] = path
        return written

    def load_image(self, path) -> torch.Tensor:
        """Read an RGB image as a (1, 3, W, H) tensor in [-1, 1]."""
        if not os.path.exists(path):
            raise ValueError(f'cannot read image: {path}')
        if os.path.splitext(str(path))[1].lower() not in SUPPORTED_IMAGE_FORMATS:
            raise ValueError(f'unsupported image format: {path}')

        try:
            with Image.open(path) as img:
                pixels = TF.pil_to_tensor(img.convert('RGB'))
        except OSError as e:
            raise ValueError(f'cannot read image: {path} ({e})') from e

        image = pixels.float() / 127.5 - 1.0
        return image.transpose(1, 2).unsqueeze(0).to(self.device)

    @staticmethod
    def _quantize(generated: torch.Tensor) -> torch.Tensor:
        generated = (255.0 * (generated.clamp(-1.0, 1.0) + 1.0) / 2.0).long()
        return 2.0 * generated.float() / 255.0 - 1.0

    @staticmethod
    def _save_image(image: torch.Tensor, path):
        pixels = ((image + 1.0) * 127.5).round().clamp(0, 255).to(torch.uint8)
        TF.to_pil_image(pixels.transpose(1, 2).cpu()).save(path, 'PNG')

    def _make_payload(self, width, height, depth, text):
        message = text_to_bits(text) + DELIMITER_BITS
        size = width * height * depth
        payload = message * (size // len(message) + 1)
        return torch.FloatTensor(payload[:size]).view(1, depth, width, height)

    @torch.inference_mode()
    def encode(self, cover, output, text):
        cover_tensor = self.load_image(cover)
        _, _, width, height = cover_tensor.size()
        payload = self._make_payload(width, height, self.data_depth, text).to(self.device)

        generated = self._quantize(self.encoder(cover_tensor, payload)[0])
        self._save_image(generated, output)
        logger.info('encoded %d characters into %s (%dx%d)', len(text), output, width, height)

        if self.cuda:
            torch.cuda.empty_cache()

    def _candidates(self, bits: List[int]) -> List[str]:
        candidates = []
        for part in split_payload(bits_to_bytes(bits)):
            try:
                text = bytes_to_text(part)
            except PayloadError as e:
                logger.debug('skipping candidate: %s', e)
                continue
            if text:
                candidates.append(text)
        return candidates

    @torch.inference_mode()
    def decode(self, image) -> str:
        image_tensor = self.load_image(image)
        bits = (self.decoder(image_tensor).view(-1) > 0).int().cpu().tolist()

        candidates = self._candidates(bits)
        if self.cuda:
            torch.cuda.empty_cache()

        if not candidates:
            raise ValueError(f'no message found in {image}')

        text, count = Counter(candidates).most_common(1)[0]
        logger.info('decoded message from %s (%d/%d candidates agree)',
                    image, count, len(candidates))
        return text

    @torch.inference_mode()
    def critic_score(self, image) -> float:
        if not self.has_critic:
            raise ValueError('model was loaded without critic weights')
        return torch.mean(self.critic(self.load_image(image))).item()

    @torch.inference_mode()
    def evaluate(self, cover, stego, text: Optional[str] = None) -> dict:
        """Image quality of ``stego`` against ``cover`` and, given the message, decoder bit accuracy."""
        cover_tensor = self.load_image(cover)
        stego_tensor = self.load_image(stego)
        if cover_tensor.shape != stego_tensor.shape:
            raise ValueError(f'image sizes differ: {tuple(cover_tensor.shape)} vs {tuple(stego_tensor.shape)}')

        metrics = {
            'psnr': psnr(cover_tensor, stego_tensor),
            'ssim': ssim(cover_tensor, stego_tensor).item(),
        }

        if text is not None:
            _, _, width, height = stego_tensor.size()
            payload = self._make_payload(width, height, self.data_depth, text).to(self.device)
            decoded = self.decoder(stego_tensor)
            acc = ((decoded >= 0.0) == (payload >= 0.5)).float().mean().item()
            metrics['decoder_acc'] = acc
            metrics['bpp'] = self.data_depth * (2 * acc - 1)

        return metrics

    def encode_batch(self, items, output_dir=None) -> List[Optional[str]]:
        """Encode ``(cover, text[, output])`` items; failures yield ``None``."""
        results = []

        for item in tqdm(items, disable=not self.verbose, desc='Encode'):
            cover_path, message = item[:2]
            try:
                if len(item) > 2:
                    output_path = item[2]
                elif output_dir is None:
                    raise ValueError(f'no output path for {cover_path} and no output_dir')
                else:
                    output_path = os.path.join(
                        output_dir, f"{os.path.splitext(os.path.basename(cover_path))[0]}_encoded.png"
                    )
                self.encode(cover_path, output_path, message)
                results.append(output_path)
            except (OSError, ValueError) as e:
                logger.error('encoding %s failed: %s', cover_path, e)
                results.append(None)

        return results

    def decode_batch(self, images) -> List[Optional[str]]:
        results = []

        for path in tqdm(images, disable=not self.verbose, desc='Decode'):
            try:
                results.append(self.decode(path))
            except (OSError, ValueError) as e:
                logger.error('decoding %s failed: %s', path, e)
                results.append(None)

        return results
