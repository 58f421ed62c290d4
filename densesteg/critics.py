# -*- coding: utf-8 -*-
"""
SteganoGAN critic
"""

import torch
from torch import nn

from densesteg.config import BATCH_NORM_EPS, LEAKY_RELU_SLOPE


class BasicCritic(nn.Module):
    """Basic critic

    Input: (N, 3, H, W)
    Output: (N,)
    """

    def __init__(self, hidden_size: int):
        super().__init__()
        self.hidden_size = hidden_size

        self.layers = nn.Sequential(
            nn.Conv2d(3, hidden_size, 3, padding=1),
            nn.LeakyReLU(LEAKY_RELU_SLOPE, inplace=True),
            nn.BatchNorm2d(hidden_size, eps=BATCH_NORM_EPS),
            nn.Conv2d(hidden_size, hidden_size, 3, padding=1),
            nn.LeakyReLU(LEAKY_RELU_SLOPE, inplace=True),
            nn.BatchNorm2d(hidden_size, eps=BATCH_NORM_EPS),
            nn.Conv2d(hidden_size, hidden_size, 3, padding=1),
            nn.LeakyReLU(LEAKY_RELU_SLOPE, inplace=True),
            nn.BatchNorm2d(hidden_size, eps=BATCH_NORM_EPS),
            nn.Conv2d(hidden_size, 1, 3, padding=1)
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = self.layers(x)
        x = torch.mean(x.view(x.size(0), -1), dim=1)
        return x
