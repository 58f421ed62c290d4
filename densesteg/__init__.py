# -*- coding: utf-8 -*-
"""
densesteg
SteganoGAN dense-variant inference on safetensors weights

Based on SteganoGAN by MIT Data To AI Lab (https://github.com/DAI-Lab/SteganoGAN)

Original paper:
    Zhang, Kevin Alex and Cuesta-Infante, Alfredo and Veeramachaneni, Kalyan.
    SteganoGAN: High Capacity Image Steganography with GANs.
    MIT EECS, January 2019. (arXiv:1901.03892)
"""

__version__ = '0.3.0'
__title__ = 'densesteg: SteganoGAN dense-variant inference'
__original_paper__ = 'https://arxiv.org/abs/1901.03892'
__original_repo__ = 'https://github.com/DAI-Lab/SteganoGAN'

from densesteg.models import SteganoGAN
from densesteg.encoders import DenseEncoder
from densesteg.decoders import DenseDecoder
from densesteg.critics import BasicCritic
from densesteg.numerics import BatchNormReport, audit_batch_norm, reference_batch_norm
from densesteg.weights import (
    WeightsError,
    export_checkpoint,
    export_state_dict,
    load_checkpoint,
    load_state_dict,
    state_dict_tree,
)
from densesteg.utils import PayloadError

__all__ = [
    'SteganoGAN',
    'DenseEncoder',
    'DenseDecoder',
    'BasicCritic',
    'BatchNormReport',
    'audit_batch_norm',
    'reference_batch_norm',
    'WeightsError',
    'PayloadError',
    'export_checkpoint',
    'load_checkpoint',
    'export_state_dict',
    'load_state_dict',
    'state_dict_tree',
]
