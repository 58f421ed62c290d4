# -*- coding: utf-8 -*-
"""
Batch normalization diagnostics

Compares every ``BatchNorm2d`` layer of a network against the closed form
``(x - running_mean) / sqrt(running_var + eps) * weight + bias`` evaluated in
float64. A layer left in training mode normalizes with batch statistics and
shows up here as a large deviation.
"""

import logging
from dataclasses import dataclass
from typing import List

import numpy as np
import torch
from torch import nn

logger = logging.getLogger(__name__)


@dataclass
class BatchNormReport:
    name: str
    eps: float
    momentum: float
    training: bool
    max_abs_diff: float
    atol: float

    @property
    def ok(self) -> bool:
        return self.max_abs_diff <= self.atol

    def __str__(self):
        status = 'ok' if self.ok else 'MISMATCH'
        mode = 'train' if self.training else 'eval'
        return (f'{self.name}: {status} max_abs_diff={self.max_abs_diff:.3e} '
                f'eps={self.eps:g} momentum={self.momentum} mode={mode}')


def reference_batch_norm(x, running_mean, running_var, weight=None, bias=None, eps=1e-5):
    """Inference batch normalization of an NCHW array, computed in float64."""
    x = np.asarray(x, dtype=np.float64)
    shape = (1, -1) + (1,) * (x.ndim - 2)

    mean = np.asarray(running_mean, dtype=np.float64).reshape(shape)
    var = np.asarray(running_var, dtype=np.float64).reshape(shape)
    out = (x - mean) / np.sqrt(var + eps)

    if weight is not None:
        out = out * np.asarray(weight, dtype=np.float64).reshape(shape)
    if bias is not None:
        out = out + np.asarray(bias, dtype=np.float64).reshape(shape)
    return out


def _to_numpy(tensor):
    return None if tensor is None else tensor.detach().cpu().double().numpy()


def compare_batch_norm(layer: nn.BatchNorm2d, x: torch.Tensor, output: torch.Tensor,
                       name: str = '', atol: float = 1e-4) -> BatchNormReport:
    expected = reference_batch_norm(
        _to_numpy(x),
        _to_numpy(layer.running_mean),
        _to_numpy(layer.running_var),
        _to_numpy(layer.weight),
        _to_numpy(layer.bias),
        layer.eps,
    )
    diff = float(np.max(np.abs(_to_numpy(output) - expected))) if expected.size else 0.0
    return BatchNormReport(
        name=name or type(layer).__name__,
        eps=layer.eps,
        momentum=layer.momentum,
        training=layer.training,
        max_abs_diff=diff,
        atol=atol,
    )


def audit_batch_norm(module: nn.Module, *inputs, atol: float = 1e-4) -> List[BatchNormReport]:
    """Run one forward pass and check every batch norm layer against the closed form.

    The module's train/eval mode is left as the caller set it. Running
    statistics are restored afterwards, so auditing in training mode does not
    alter the weights.
    """
    layers = [(name, m) for name, m in module.named_modules() if isinstance(m, nn.BatchNorm2d)]
    saved = {name: (m.running_mean.clone(), m.running_var.clone(), m.num_batches_tracked.clone())
             for name, m in layers if m.track_running_stats}
    captured = {}
    handles = []

    def make_hook(name):
        def hook(layer, args, output):
            captured[name] = (args[0].detach().clone(), output.detach().clone())
        return hook

    for name, layer in layers:
        handles.append(layer.register_forward_hook(make_hook(name)))

    try:
        with torch.no_grad():
            module(*inputs)
    finally:
        for handle in handles:
            handle.remove()
        for name, layer in layers:
            if name in saved:
                running_mean, running_var, num_batches = saved[name]
                layer.running_mean.copy_(running_mean)
                layer.running_var.copy_(running_var)
                layer.num_batches_tracked.copy_(num_batches)

    reports = []
    for name, layer in layers:
        if name not in captured:
            logger.warning('batch norm %s was not reached by the forward pass', name)
            continue
        x, output = captured[name]
        report = compare_batch_norm(layer, x, output, name=name, atol=atol)
        reports.append(report)
        logger.info('%s', report)

    return reports
