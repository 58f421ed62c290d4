# -*- coding: utf-8 -*-
"""
densesteg configuration
"""

import os

VERSION = '0.3.0'

DEFAULT_CONFIG = {
    'weights_dir': 'pretrained',
    'cuda': True,
    'verbose': False
}

WEIGHT_FILES = {
    'encoder': 'encoder.safetensors',
    'decoder': 'decoder.safetensors',
    'critic': 'critic.safetensors'
}

WEIGHTS_DIR_ENV = 'DENSESTEG_WEIGHTS_DIR'

BATCH_NORM_EPS = 1e-5
LEAKY_RELU_SLOPE = 0.01

MESSAGE_DELIMITER = b'\x00' * 4
CHUNK_SIZE = 5
ENCODED_SIZE = 30

SUPPORTED_IMAGE_FORMATS = ['.png', '.jpg', '.jpeg', '.bmp']


def get_config(**overrides):
    """Return a copy of DEFAULT_CONFIG with environment and keyword overrides applied.

    ``None`` values in ``overrides`` are ignored so argparse namespaces can be
    passed through unchanged.
    """
    config = dict(DEFAULT_CONFIG)
    if os.environ.get(WEIGHTS_DIR_ENV):
        config['weights_dir'] = os.environ[WEIGHTS_DIR_ENV]

    for key, value in overrides.items():
        if key not in DEFAULT_CONFIG:
            raise KeyError(f'unknown config key: {key}')
        if value is not None:
            config[key] = value

    return config
