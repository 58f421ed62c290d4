# -*- coding: utf-8 -*-
"""
SteganoGAN dense encoder
"""

import torch
from torch import nn

from densesteg.config import BATCH_NORM_EPS, LEAKY_RELU_SLOPE


def conv_block(in_channels: int, out_channels: int) -> nn.Sequential:
    """Conv -> LeakyReLU -> BatchNorm, parameters named ``0.*`` and ``2.*``."""
    return nn.Sequential(
        nn.Conv2d(in_channels, out_channels, 3, padding=1),
        nn.LeakyReLU(LEAKY_RELU_SLOPE, inplace=True),
        nn.BatchNorm2d(out_channels, eps=BATCH_NORM_EPS),
    )


class DenseEncoder(nn.Module):
    """Densely connected encoder

    Every block sees the concatenation of all earlier block outputs plus the
    payload, and the final convolution's output is added to the cover image.

    Input: (N, 3, H, W), (N, D, H, W)
    Output: (N, 3, H, W)
    """

    add_image = True

    def __init__(self, data_depth: int, hidden_size: int):
        super().__init__()
        self.data_depth = data_depth
        self.hidden_size = hidden_size

        self.conv1 = conv_block(3, hidden_size)
        self.conv2 = conv_block(hidden_size + data_depth, hidden_size)
        self.conv3 = conv_block(hidden_size * 2 + data_depth, hidden_size)
        self.conv4 = nn.Sequential(
            nn.Conv2d(hidden_size * 3 + data_depth, 3, 3, padding=1),
        )

    def forward(self, image: torch.Tensor, data: torch.Tensor) -> torch.Tensor:
        x1 = self.conv1(image)
        x2 = self.conv2(torch.cat([x1, data], dim=1))
        x3 = self.conv3(torch.cat([x1, x2, data], dim=1))
        x4 = self.conv4(torch.cat([x1, x2, x3, data], dim=1))

        if self.add_image:
            x4 = image + x4

        return x4
