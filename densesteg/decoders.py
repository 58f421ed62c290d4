# -*- coding: utf-8 -*-
"""
SteganoGAN dense decoder
"""

import torch
from torch import nn

from densesteg.encoders import conv_block


class DenseDecoder(nn.Module):
    """Densely connected decoder

    Input: (N, 3, H, W)
    Output: (N, D, H, W) logits
    """

    def __init__(self, data_depth: int, hidden_size: int):
        super().__init__()
        self.data_depth = data_depth
        self.hidden_size = hidden_size

        self.conv1 = conv_block(3, hidden_size)
        self.conv2 = conv_block(hidden_size, hidden_size)
        self.conv3 = conv_block(hidden_size * 2, hidden_size)
        self.conv4 = nn.Sequential(
            nn.Conv2d(hidden_size * 3, data_depth, 3, padding=1)
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x1 = self.conv1(x)
        x2 = self.conv2(x1)
        x3 = self.conv3(torch.cat([x1, x2], dim=1))
        x4 = self.conv4(torch.cat([x1, x2, x3], dim=1))
        return x4
