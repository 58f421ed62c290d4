# -*- coding: utf-8 -*-
"""
safetensors weight store

A weights directory holds one safetensors file per network (see
``config.WEIGHT_FILES``). Tensor names are ``state_dict`` keys without the
``num_batches_tracked`` buffers, stored as contiguous float32.
"""

import logging
import os
import pickle
from typing import Dict, List, Tuple

import torch
from safetensors import SafetensorError
from safetensors.torch import load_file, save_file
from torch import nn

from densesteg.config import WEIGHT_FILES

logger = logging.getLogger(__name__)

LEGACY_PREFIXES = {
    '_models.': 'layers.',
}

SKIPPED_SUFFIX = 'num_batches_tracked'


class WeightsError(ValueError):
    """Raised when a weight file does not fit the network it is loaded into."""


def _rename_legacy(tensors: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
    renamed = {}
    for name, tensor in tensors.items():
        for old, new in LEGACY_PREFIXES.items():
            if name.startswith(old):
                name = new + name[len(old):]
        renamed[name] = tensor
    return renamed


def exportable_tensors(state_dict: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
    """Filter and convert a state dict into what goes into a safetensors file."""
    tensors = {}
    for name, tensor in _rename_legacy(state_dict).items():
        if name.endswith(SKIPPED_SUFFIX):
            continue
        tensors[name] = tensor.detach().to('cpu', torch.float32).contiguous()
    return tensors


def export_state_dict(module, path: str) -> List[str]:
    """Write ``module`` (an ``nn.Module`` or a state dict) to one safetensors file."""
    state_dict = module.state_dict() if isinstance(module, nn.Module) else module
    tensors = exportable_tensors(state_dict)

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    save_file(tensors, path)
    logger.info('exported %d tensors to %s', len(tensors), path)
    return sorted(tensors)


def read_tensors(path: str) -> Dict[str, torch.Tensor]:
    if not os.path.exists(path):
        raise FileNotFoundError(f'weights file not found: {path}')
    try:
        tensors = load_file(path, device='cpu')
    except SafetensorError as e:
        raise WeightsError(f'{path} is not a valid safetensors file: {e}') from e
    return _rename_legacy(tensors)


def load_state_dict(module: nn.Module, path: str, strict: bool = True) -> List[str]:
    """Load a safetensors file into ``module``.

    Missing ``num_batches_tracked`` buffers are tolerated. With ``strict``,
    any other missing or unexpected name, or a shape mismatch, raises
    ``WeightsError``. Returns the names that were loaded.
    """
    tensors = read_tensors(path)
    expected = module.state_dict()

    missing = sorted(
        name for name in expected
        if name not in tensors and not name.endswith(SKIPPED_SUFFIX)
    )
    unexpected = sorted(name for name in tensors if name not in expected)
    mismatched = sorted(
        f'{name}: expected {list(expected[name].shape)}, got {list(tensor.shape)}'
        for name, tensor in tensors.items()
        if name in expected and expected[name].shape != tensor.shape
    )

    if strict and (missing or unexpected or mismatched):
        problems = []
        if missing:
            problems.append('missing: ' + ', '.join(missing))
        if unexpected:
            problems.append('unexpected: ' + ', '.join(unexpected))
        if mismatched:
            problems.append('shape mismatch: ' + '; '.join(mismatched))
        raise WeightsError(f'{path} does not match {type(module).__name__} ({" | ".join(problems)})')

    loadable = {
        name: tensor for name, tensor in tensors.items()
        if name in expected and expected[name].shape == tensor.shape
    }
    module.load_state_dict(loadable, strict=False)
    logger.debug('loaded %d tensors from %s into %s', len(loadable), path, type(module).__name__)
    return sorted(loadable)


def infer_hyperparameters(encoder_tensors: Dict[str, torch.Tensor]) -> Tuple[int, int]:
    """Return ``(data_depth, hidden_size)`` from dense encoder tensors."""
    try:
        hidden_size = encoder_tensors['conv1.0.weight'].shape[0]
        data_depth = encoder_tensors['conv2.0.weight'].shape[1] - hidden_size
    except KeyError as e:
        raise WeightsError(f'cannot infer hyperparameters, tensor {e} is missing') from e

    if data_depth <= 0:
        raise WeightsError(f'inferred data_depth {data_depth} is not positive')
    return data_depth, hidden_size


def _checkpoint_states(checkpoint) -> Dict[str, Dict[str, torch.Tensor]]:
    if isinstance(checkpoint, dict):
        return checkpoint.get('model_state', checkpoint)

    # a pickled model object carrying the three networks as attributes
    if hasattr(checkpoint, 'encoder'):
        return {
            name: getattr(checkpoint, name).state_dict()
            for name in WEIGHT_FILES if hasattr(checkpoint, name)
        }

    raise WeightsError(f'unsupported checkpoint type: {type(checkpoint).__name__}')


def load_checkpoint(path, trusted: bool = False):
    """Read a torch checkpoint on the CPU.

    Only tensors and plain containers are unpickled unless ``trusted`` is set,
    which is needed for checkpoints that pickle whole model objects.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f'checkpoint not found: {path}')

    logger.info('reading checkpoint %s', path)
    try:
        return torch.load(path, map_location='cpu', weights_only=not trusted)
    except pickle.UnpicklingError as e:
        raise WeightsError(
            f'{path} holds more than tensors; load it as trusted to unpickle model objects'
        ) from e


def export_checkpoint(checkpoint, out_dir: str, trusted: bool = False) -> Dict[str, str]:
    """Re-export a torch checkpoint to a safetensors weights directory.

    ``checkpoint`` is a path or an already loaded object: a dict holding
    ``encoder``/``decoder``/``critic`` state dicts at top level or under
    ``model_state``, or a model object exposing those networks. Nothing is
    written unless the encoder and decoder are both present.
    """
    if isinstance(checkpoint, (str, os.PathLike)):
        checkpoint = load_checkpoint(checkpoint, trusted=trusted)

    states = _checkpoint_states(checkpoint)
    for name in ('encoder', 'decoder'):
        if name not in states:
            raise WeightsError(f'checkpoint has no {name} weights')
    if 'critic' not in states:
        logger.warning('checkpoint has no critic weights, skipping')

    data_depth, hidden_size = infer_hyperparameters(exportable_tensors(states['encoder']))

    written = {}
    for name, filename in WEIGHT_FILES.items():
        if name in states:
            path = os.path.join(out_dir, filename)
            export_state_dict(states[name], path)
            written[name] = path

    logger.info('re-exported checkpoint: data_depth=%d hidden_size=%d', data_depth, hidden_size)
    return written


def _shape(tensor: torch.Tensor) -> str:
    return '[' + ', '.join(str(d) for d in tensor.shape) + ']'


def state_dict_tree(tensors: Dict[str, torch.Tensor]) -> str:
    """Render tensor names as an indented tree with shapes at the leaves.

    >>> print(state_dict_tree({'conv4.0.bias': torch.zeros(3)}))
    conv4
     0
      bias: [3]
    """
    tree = {}
    for name, tensor in tensors.items():
        if name.endswith(SKIPPED_SUFFIX):
            continue
        *branches, leaf = name.split('.')
        node = tree
        for part in branches:
            node = node.setdefault(part, {})
        node[leaf] = tensor

    lines = []

    def render(node, indent):
        for key in sorted(node):
            value = node[key]
            if isinstance(value, dict):
                lines.append(' ' * indent + key)
                render(value, indent + 1)
            else:
                lines.append(' ' * indent + f'{key}: {_shape(value)}')

    render(tree, 0)
    return '\n'.join(lines)
