#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
densesteg Setup Script

SteganoGAN dense-variant inference on safetensors weights, based on SteganoGAN
by MIT Data To AI Lab (https://github.com/DAI-Lab/SteganoGAN)

Original paper: Zhang, Kevin Alex and Cuesta-Infante, Alfredo and
Veeramachaneni, Kalyan. SteganoGAN: High Capacity Image Steganography
with GANs. MIT EECS, January 2019. (arXiv:1901.03892)
"""

from setuptools import find_packages, setup

with open('README.md') as readme_file:
    readme = readme_file.read()

install_requires = [
    'torch>=2.0.0',
    'torchvision>=0.15.0',
    'Pillow>=9.1.0',
    'numpy>=1.21.0',
    'reedsolo>=1.0.0',
    'tqdm>=4.64.0',
    'safetensors>=0.4.0',
]

tests_require = [
    'pytest>=7.0.0',
]

setup(
    author="densesteg developers",
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
    ],
    description="SteganoGAN dense-variant inference on safetensors weights",
    entry_points={
        'console_scripts': [
            'densesteg=densesteg.cli:main'
        ],
    },
    extras_require={
        'test': tests_require,
    },
    install_requires=install_requires,
    license="MIT license",
    long_description=readme,
    long_description_content_type='text/markdown',
    include_package_data=True,
    keywords='densesteg steganography deep-learning gan pytorch safetensors steganogan',
    name='densesteg',
    packages=find_packages(include=['densesteg', 'densesteg.*']),
    python_requires='>=3.8',
    version='0.3.0',
    zip_safe=False,
)
